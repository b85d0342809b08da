from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import Patient


class PatientAdmin(ClinicModelAdmin):
    """Admin interface for Patient model."""

    list_display = ['name', 'phone', 'email', 'membership_badge', 'is_active', 'created_at']
    list_filter = ['is_active', 'gender', 'membership_status']
    search_fields = ['name', 'phone', 'email']

    fieldsets = (
        ('Personal Information', {
            'fields': ('name', 'phone', 'email', 'gender', 'date_of_birth')
        }),
        ('Address', {
            'fields': ('street', 'city', 'state', 'pincode')
        }),
        ('Medical', {
            'fields': ('blood_group', 'allergies', 'medical_history', 'preferred_clinic')
        }),
        ('Membership', {
            'fields': (
                'membership_plan_code',
                'membership_plan_name',
                'membership_discount_percent',
                'membership_start_date',
                'membership_expiry_date',
                'membership_status',
            )
        }),
        ('Audit', {
            'fields': ('registered_by_id', 'is_active', 'notes', 'created_at', 'updated_at')
        }),
    )

    def membership_badge(self, obj):
        if obj.has_membership:
            return self.render_badge('paid', f"{obj.membership_plan_name or 'Member'} ({obj.current_discount}%)")
        return self.render_badge('cancelled', 'None')
    membership_badge.short_description = 'Membership'


clinic_admin_site.register(Patient, PatientAdmin)
