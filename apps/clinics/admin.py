# clinics/admin.py
from django.contrib import admin

from common.admin_site import ClinicModelAdmin, clinic_admin_site
from .models import Clinic, ClinicOperatingHours, ClinicHoliday


class OperatingHoursInline(admin.TabularInline):
    model = ClinicOperatingHours
    extra = 0
    max_num = 7


class ClinicHolidayInline(admin.TabularInline):
    model = ClinicHoliday
    extra = 0


class ClinicAdmin(ClinicModelAdmin):
    """Admin interface for Clinic model."""

    list_display = ['code', 'name', 'city', 'phone', 'slot_duration', 'opd_fee', 'is_active']
    list_filter = ['is_active', 'city']
    search_fields = ['code', 'name', 'city', 'phone']
    inlines = [OperatingHoursInline, ClinicHolidayInline]

    fieldsets = (
        ('Clinic', {
            'fields': ('name', 'code', 'phone', 'email', 'is_active')
        }),
        ('Address', {
            'fields': ('street', 'area', 'city', 'state', 'pincode')
        }),
        ('Appointment Settings', {
            'fields': ('slot_duration', 'max_daily_appointments', 'opd_fee', 'emergency_opd_fee')
        }),
        ('Audit', {
            'fields': ('created_at', 'updated_at')
        }),
    )


clinic_admin_site.register(Clinic, ClinicAdmin)
