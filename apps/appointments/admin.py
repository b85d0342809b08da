# appointments/admin.py
from django.contrib import admin

from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import Appointment, AppointmentStatusHistory


class StatusHistoryInline(admin.TabularInline):
    model = AppointmentStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ['status', 'reason', 'changed_by_id', 'changed_at']

    def has_add_permission(self, request, obj=None):
        return False


class AppointmentAdmin(ClinicModelAdmin):
    """Admin interface for Appointment model."""

    list_display = [
        'appointment_number', 'patient', 'clinic', 'date', 'time_slot',
        'token_number', 'status_badge', 'type', 'opd_fee_paid'
    ]
    list_filter = ['status', 'type', 'source', 'clinic', 'date']
    search_fields = ['appointment_number', 'patient__name', 'patient__phone']
    date_hierarchy = 'date'
    inlines = [StatusHistoryInline]
    readonly_fields = [
        'appointment_number', 'token_number', 'status', 'check_in_time',
        'start_time', 'end_time', 'cancelled_at', 'cancelled_by_id', 'created_by_id'
    ]

    fieldsets = (
        ('Appointment', {
            'fields': ('appointment_number', 'patient', 'clinic', 'date', 'time_slot', 'token_number')
        }),
        ('Details', {
            'fields': ('type', 'source', 'status', 'reason', 'notes')
        }),
        ('Visit', {
            'fields': ('check_in_time', 'start_time', 'end_time')
        }),
        ('Fees', {
            'fields': ('opd_fee', 'opd_fee_paid')
        }),
        ('Cancellation', {
            'fields': ('cancellation_reason', 'cancelled_at', 'cancelled_by_id'),
            'classes': ('collapse',)
        }),
        ('Audit', {
            'fields': ('reminder_sent', 'created_by_id', 'created_at', 'updated_at')
        }),
    )

    def status_badge(self, obj):
        return self.render_badge(obj.status, obj.get_status_display())
    status_badge.short_description = 'Status'


clinic_admin_site.register(Appointment, AppointmentAdmin)
