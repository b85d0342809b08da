# payments/models.py
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q


class Payment(models.Model):
    """
    Money received from a patient, offline or through Razorpay.

    `applied_to_invoice` records that the amount has been added to the
    linked invoice's amount_paid; the reconciler flips it in the same
    transaction that marks the payment paid.
    """

    PAYMENT_MODE_CHOICES = [
        ('cash', 'Cash'),
        ('card', 'Card'),
        ('upi', 'UPI'),
        ('razorpay', 'Razorpay'),
        ('netbanking', 'Net Banking'),
        ('other', 'Other'),
    ]

    PAYMENT_TYPE_CHOICES = [
        ('invoice_payment', 'Invoice Payment'),
        ('advance', 'Advance'),
        ('membership', 'Membership'),
        ('refund', 'Refund'),
        ('opd_fee', 'OPD Fee'),
    ]

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
        ('cancelled', 'Cancelled'),
    ]

    payment_number = models.CharField(max_length=40, unique=True, editable=False)

    patient = models.ForeignKey(
        'patients.Patient',
        on_delete=models.PROTECT,
        related_name='payments'
    )
    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.PROTECT,
        related_name='payments'
    )
    invoice = models.ForeignKey(
        'billing.Invoice',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='payments'
    )
    appointment = models.ForeignKey(
        'appointments.Appointment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payments'
    )

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('1.00'))]
    )
    payment_mode = models.CharField(max_length=20, choices=PAYMENT_MODE_CHOICES)
    payment_type = models.CharField(max_length=20, choices=PAYMENT_TYPE_CHOICES, default='invoice_payment')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    paid_at = models.DateTimeField(null=True, blank=True)

    # Razorpay correlation
    razorpay_order_id = models.CharField(max_length=100, null=True, blank=True)
    razorpay_payment_id = models.CharField(max_length=100, blank=True)
    razorpay_signature = models.CharField(max_length=255, blank=True)

    # Gateway details reported by Razorpay
    gateway_receipt = models.CharField(max_length=100, blank=True)
    gateway_method = models.CharField(max_length=50, blank=True)
    gateway_bank = models.CharField(max_length=100, blank=True)
    gateway_wallet = models.CharField(max_length=100, blank=True)
    gateway_vpa = models.CharField(max_length=100, blank=True)
    gateway_fee = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    gateway_tax = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    error_code = models.CharField(max_length=100, blank=True)
    error_description = models.TextField(blank=True)

    reference_number = models.CharField(max_length=100, blank=True)
    received_by_id = models.CharField(max_length=64, blank=True)

    # Refund
    refunded_at = models.DateTimeField(null=True, blank=True)
    refunded_by_id = models.CharField(max_length=64, blank=True)
    refund_reason = models.TextField(blank=True)
    refund_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    razorpay_refund_id = models.CharField(max_length=100, blank=True)

    applied_to_invoice = models.BooleanField(default=False)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payments'
        ordering = ['-created_at']
        verbose_name = 'Payment'
        verbose_name_plural = 'Payments'
        indexes = [
            models.Index(fields=['patient', 'status'], name='payment_patient_status_idx'),
            models.Index(fields=['clinic', 'created_at'], name='payment_clinic_created_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['razorpay_order_id'],
                condition=Q(razorpay_order_id__isnull=False),
                name='uniq_payment_razorpay_order',
            ),
        ]

    def __str__(self):
        return f"{self.payment_number} - {self.amount} ({self.status})"

    @property
    def is_gateway(self):
        return self.payment_mode == 'razorpay'
