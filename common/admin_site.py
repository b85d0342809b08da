from django.contrib import admin
from django.contrib.admin.sites import AdminSite
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _


class ClinicAdminSite(AdminSite):
    """
    Admin site for clinic staff
    """
    site_title = _('DentalCare Administration')
    site_header = _('DentalCare Admin')
    index_title = _('Clinic scheduling and billing')


class ClinicModelAdmin(admin.ModelAdmin):
    """
    Base ModelAdmin shared by the clinic apps.

    Timestamps and generated numbers are always read-only, and status
    fields can be rendered as colored badges.
    """

    status_colors = {
        'paid': 'green',
        'completed': 'green',
        'partial': 'orange',
        'partially_paid': 'orange',
        'in_progress': 'orange',
        'pending': 'orange',
        'unpaid': 'red',
        'failed': 'red',
        'overdue': 'red',
        'cancelled': 'gray',
        'refunded': 'gray',
    }

    base_readonly_fields = ['created_at', 'updated_at']

    def get_readonly_fields(self, request, obj=None):
        fields = list(super().get_readonly_fields(request, obj))
        for name in self.base_readonly_fields:
            if name not in fields and hasattr(self.model, name):
                fields.append(name)
        return fields

    def render_badge(self, value, label):
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            self.status_colors.get(value, 'steelblue'),
            label
        )


# Create custom admin site instance
clinic_admin_site = ClinicAdminSite(name='clinic_admin')
