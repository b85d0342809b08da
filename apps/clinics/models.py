# clinics/models.py
from datetime import time
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models


class Clinic(models.Model):
    """
    Clinic location with its booking configuration.

    The weekly template lives in ClinicOperatingHours and closures in
    ClinicHoliday; slot generation is in clinics.calendar.
    """

    # Primary Fields
    name = models.CharField(max_length=200)
    code = models.CharField(
        max_length=20,
        unique=True,
        help_text="Short unique code used in appointment numbers (e.g., DC01)"
    )

    # Address
    street = models.CharField(max_length=255, blank=True)
    area = models.CharField(max_length=120, blank=True)
    city = models.CharField(max_length=120, blank=True)
    state = models.CharField(max_length=120, blank=True)
    pincode = models.CharField(max_length=12, blank=True)

    # Contact
    phone = models.CharField(max_length=20)
    email = models.EmailField(blank=True)

    # Appointment Settings
    slot_duration = models.PositiveIntegerField(
        default=30,
        validators=[MinValueValidator(5), MaxValueValidator(240)],
        help_text="Slot length in minutes"
    )
    max_daily_appointments = models.PositiveIntegerField(
        default=50,
        help_text="Maximum non-cancelled appointments per day"
    )
    opd_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('300.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    emergency_opd_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('500.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )

    is_active = models.BooleanField(default=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'clinics'
        ordering = ['name']
        verbose_name = 'Clinic'
        verbose_name_plural = 'Clinics'
        indexes = [
            models.Index(fields=['is_active'], name='clinic_active_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})"

    def save(self, *args, **kwargs):
        """Store clinic codes upper-case."""
        if self.code:
            self.code = self.code.strip().upper()
        super().save(*args, **kwargs)

    def fee_for(self, appointment_type):
        """OPD fee charged for an appointment of the given type."""
        if appointment_type == 'emergency':
            return self.emergency_opd_fee
        return self.opd_fee

    def create_default_hours(self):
        """Sunday closed, Monday-Friday 09:00-20:00, Saturday 09:00-14:00."""
        rows = []
        for day in range(7):
            if day == 0:
                rows.append(ClinicOperatingHours(clinic=self, day_of_week=day, is_open=False))
            elif day == 6:
                rows.append(ClinicOperatingHours(
                    clinic=self, day_of_week=day, is_open=True,
                    open_time=time(9, 0), close_time=time(14, 0)
                ))
            else:
                rows.append(ClinicOperatingHours(
                    clinic=self, day_of_week=day, is_open=True,
                    open_time=time(9, 0), close_time=time(20, 0)
                ))
        ClinicOperatingHours.objects.bulk_create(rows)


class ClinicOperatingHours(models.Model):
    """Weekly opening template, one row per day of week."""

    DAYS_OF_WEEK = [
        (0, 'Sunday'),
        (1, 'Monday'),
        (2, 'Tuesday'),
        (3, 'Wednesday'),
        (4, 'Thursday'),
        (5, 'Friday'),
        (6, 'Saturday'),
    ]

    clinic = models.ForeignKey(
        Clinic,
        on_delete=models.CASCADE,
        related_name='operating_hours'
    )
    day_of_week = models.PositiveSmallIntegerField(
        choices=DAYS_OF_WEEK,
        validators=[MaxValueValidator(6)]
    )
    is_open = models.BooleanField(default=True)
    open_time = models.TimeField(null=True, blank=True)
    close_time = models.TimeField(null=True, blank=True)

    class Meta:
        db_table = 'clinic_operating_hours'
        ordering = ['clinic', 'day_of_week']
        verbose_name = 'Operating Hours'
        verbose_name_plural = 'Operating Hours'
        constraints = [
            models.UniqueConstraint(fields=['clinic', 'day_of_week'], name='uniq_clinic_day_of_week'),
        ]

    def __str__(self):
        if not self.is_open:
            return f"{self.clinic.code} {self.get_day_of_week_display()}: closed"
        return f"{self.clinic.code} {self.get_day_of_week_display()}: {self.open_time}-{self.close_time}"

    def clean(self):
        if self.is_open:
            if not self.open_time or not self.close_time:
                raise ValidationError(f"{self.get_day_of_week_display()}: open and close times are required")
            if self.close_time <= self.open_time:
                raise ValidationError({
                    'close_time': 'Close time must be after open time.'
                })


class ClinicHoliday(models.Model):
    """A date on which the clinic takes no bookings."""

    clinic = models.ForeignKey(
        Clinic,
        on_delete=models.CASCADE,
        related_name='holidays'
    )
    date = models.DateField()
    reason = models.CharField(max_length=200, default='Holiday')

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'clinic_holidays'
        ordering = ['date']
        verbose_name = 'Clinic Holiday'
        verbose_name_plural = 'Clinic Holidays'
        constraints = [
            models.UniqueConstraint(fields=['clinic', 'date'], name='uniq_clinic_holiday_date'),
        ]

    def __str__(self):
        return f"{self.clinic.code} {self.date}: {self.reason}"
