# billing/admin.py
from django.contrib import admin

from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import Invoice, InvoiceItem


class InvoiceItemInline(admin.TabularInline):
    model = InvoiceItem
    extra = 0
    readonly_fields = ['amount', 'tax_amount', 'total']


class InvoiceAdmin(ClinicModelAdmin):
    """Admin interface for Invoice model."""

    list_display = [
        'invoice_number', 'patient', 'clinic', 'invoice_date', 'grand_total',
        'amount_paid', 'balance_due', 'status_badge', 'payment_badge'
    ]
    list_filter = ['status', 'payment_status', 'clinic', 'invoice_date']
    search_fields = ['invoice_number', 'patient__name', 'patient__phone']
    date_hierarchy = 'invoice_date'
    inlines = [InvoiceItemInline]
    readonly_fields = [
        'invoice_number', 'subtotal', 'total_discount', 'total_tax', 'grand_total',
        'amount_paid', 'balance_due', 'status', 'payment_status',
        'cancelled_at', 'cancelled_by_id', 'created_by_id'
    ]

    fieldsets = (
        ('Invoice', {
            'fields': ('invoice_number', 'patient', 'clinic', 'appointment', 'invoice_date', 'due_date')
        }),
        ('Discount', {
            'fields': ('discount_percentage', 'discount_amount', 'discount_reason')
        }),
        ('Totals', {
            'fields': (
                'subtotal', 'total_discount', 'total_tax', 'grand_total',
                'amount_paid', 'balance_due', 'status', 'payment_status'
            )
        }),
        ('Notes', {
            'fields': ('notes', 'terms')
        }),
        ('Cancellation', {
            'fields': ('cancellation_reason', 'cancelled_at', 'cancelled_by_id'),
            'classes': ('collapse',)
        }),
        ('Audit', {
            'fields': ('created_by_id', 'created_at', 'updated_at')
        }),
    )

    def save_related(self, request, form, formsets, change):
        super().save_related(request, form, formsets, change)
        form.instance.recalculate()

    def status_badge(self, obj):
        return self.render_badge(obj.status, obj.get_status_display())
    status_badge.short_description = 'Status'

    def payment_badge(self, obj):
        return self.render_badge(obj.payment_status, obj.get_payment_status_display())
    payment_badge.short_description = 'Payment'


clinic_admin_site.register(Invoice, InvoiceAdmin)
