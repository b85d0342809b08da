# patients/models.py
from decimal import Decimal

from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone


class Patient(models.Model):
    """
    Patient record with the current membership embedded.

    Membership plans are managed elsewhere; billing only reads the
    discount through `has_membership` / `current_discount`.
    """

    GENDER_CHOICES = [
        ('male', 'Male'),
        ('female', 'Female'),
        ('other', 'Other'),
    ]

    BLOOD_GROUP_CHOICES = [
        ('A+', 'A+'), ('A-', 'A-'),
        ('B+', 'B+'), ('B-', 'B-'),
        ('AB+', 'AB+'), ('AB-', 'AB-'),
        ('O+', 'O+'), ('O-', 'O-'),
    ]

    MEMBERSHIP_STATUS_CHOICES = [
        ('active', 'Active'),
        ('expired', 'Expired'),
        ('cancelled', 'Cancelled'),
    ]

    # Personal Information
    name = models.CharField(max_length=200)
    phone = models.CharField(max_length=20, unique=True)
    email = models.EmailField(blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    date_of_birth = models.DateField(null=True, blank=True)

    # Address
    street = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=120, blank=True)
    state = models.CharField(max_length=120, blank=True, default='Haryana')
    pincode = models.CharField(max_length=12, blank=True)

    # Medical Information
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    medical_history = models.JSONField(default=list, blank=True)

    preferred_clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='preferred_by_patients'
    )

    # Membership
    membership_plan_code = models.CharField(max_length=50, blank=True)
    membership_plan_name = models.CharField(max_length=120, blank=True)
    membership_discount_percent = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[
            MinValueValidator(Decimal('0.00')),
            MaxValueValidator(Decimal('100.00'))
        ]
    )
    membership_start_date = models.DateTimeField(null=True, blank=True)
    membership_expiry_date = models.DateTimeField(null=True, blank=True)
    membership_status = models.CharField(
        max_length=20,
        choices=MEMBERSHIP_STATUS_CHOICES,
        blank=True
    )

    # Meta
    registered_by_id = models.CharField(max_length=64, blank=True)
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'
        ordering = ['-created_at']
        verbose_name = 'Patient'
        verbose_name_plural = 'Patients'
        indexes = [
            models.Index(fields=['name'], name='patient_name_idx'),
            models.Index(fields=['membership_status'], name='patient_membership_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.phone})"

    @property
    def has_membership(self):
        """Active membership that has not yet expired."""
        return (
            self.membership_status == 'active'
            and self.membership_expiry_date is not None
            and self.membership_expiry_date > timezone.now()
        )

    @property
    def current_discount(self):
        """Membership discount percent, 0 without an active membership."""
        if self.has_membership:
            return self.membership_discount_percent
        return Decimal('0.00')


def has_membership(patient_id):
    patient = Patient.objects.filter(pk=patient_id).first()
    return bool(patient and patient.has_membership)


def current_discount_percent(patient_id):
    patient = Patient.objects.filter(pk=patient_id).first()
    if patient is None:
        return Decimal('0.00')
    return patient.current_discount
