from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import Payment


class PaymentAdmin(ClinicModelAdmin):
    """Payments are created through the API; the admin is read-mostly."""
    list_display = [
        'payment_number',
        'patient',
        'amount',
        'payment_mode',
        'payment_type',
        'status_badge',
        'paid_at',
        'created_at'
    ]

    list_filter = [
        'status',
        'payment_mode',
        'payment_type',
        'clinic',
        'created_at'
    ]

    search_fields = [
        'payment_number',
        'razorpay_order_id',
        'razorpay_payment_id',
        'patient__name',
        'patient__phone'
    ]

    readonly_fields = [
        'payment_number', 'status', 'paid_at', 'applied_to_invoice',
        'razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature',
        'refunded_at', 'refunded_by_id', 'refund_amount', 'razorpay_refund_id'
    ]

    fieldsets = (
        ('Payment', {
            'fields': (
                'payment_number', 'patient', 'clinic', 'invoice', 'appointment',
                'amount', 'payment_mode', 'payment_type', 'status', 'paid_at',
                'applied_to_invoice'
            )
        }),
        ('Razorpay', {
            'fields': (
                'razorpay_order_id', 'razorpay_payment_id', 'razorpay_signature',
                'gateway_receipt', 'gateway_method', 'gateway_bank', 'gateway_wallet',
                'gateway_vpa', 'gateway_fee', 'gateway_tax', 'error_code', 'error_description'
            ),
            'classes': ('collapse',)
        }),
        ('Refund', {
            'fields': (
                'refunded_at', 'refunded_by_id', 'refund_reason',
                'refund_amount', 'razorpay_refund_id'
            ),
            'classes': ('collapse',)
        }),
        ('Audit', {
            'fields': ('reference_number', 'received_by_id', 'notes', 'created_at', 'updated_at')
        }),
    )

    def status_badge(self, obj):
        return self.render_badge(obj.status, obj.get_status_display())
    status_badge.short_description = 'Status'

    def has_delete_permission(self, request, obj=None):
        return False


clinic_admin_site.register(Payment, PaymentAdmin)
