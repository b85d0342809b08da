# billing/models.py
import logging
from collections import namedtuple
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from common.exceptions import ExceedsBalance, InvalidOperation, NotFound

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')

# Tagged reference from a line item to the billed entity.
ItemReference = namedtuple('ItemReference', ['kind', 'id'])


def to_money(value):
    return Decimal(value or 0).quantize(CENT, rounding=ROUND_HALF_UP)


def round_rupee(value):
    """Nearest whole rupee, halves rounded away from zero."""
    return Decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP).quantize(CENT)


def derive_payment_status(amount_paid, grand_total):
    if amount_paid >= grand_total:
        return 'paid'
    if amount_paid > 0:
        return 'partial'
    return 'unpaid'


def derive_status(current_status, payment_status):
    """
    Invoice status implied by `payment_status`.

    Drafts and cancelled invoices keep their status. An overdue invoice
    stays overdue until it is fully paid.
    """
    if current_status in ('draft', 'cancelled'):
        return current_status
    if payment_status == 'paid':
        return 'paid'
    if current_status == 'overdue':
        return 'overdue'
    if payment_status == 'partial':
        return 'partially_paid'
    return 'sent'


def past_due(today):
    """Open issued invoices whose due date is before `today`."""
    return (
        Q(due_date__lt=today, payment_status__in=['unpaid', 'partial'])
        & ~Q(status__in=['draft', 'paid', 'cancelled'])
    )


def default_due_date():
    return timezone.localdate() + timedelta(days=getattr(settings, 'INVOICE_DUE_DAYS', 7))


class Invoice(models.Model):
    """
    Patient invoice.

    Every money field below `discount_reason` is derived by `recalculate()`
    from the items, the invoice-level discount and `amount_paid`; nothing
    else writes them.
    """

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('sent', 'Sent'),
        ('partially_paid', 'Partially Paid'),
        ('paid', 'Paid'),
        ('overdue', 'Overdue'),
        ('cancelled', 'Cancelled'),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('unpaid', 'Unpaid'),
        ('partial', 'Partial'),
        ('paid', 'Paid'),
    ]

    invoice_number = models.CharField(max_length=40, unique=True, editable=False)

    patient = models.ForeignKey(
        'patients.Patient',
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    appointment = models.ForeignKey(
        'appointments.Appointment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='invoices'
    )

    invoice_date = models.DateField(default=timezone.localdate)
    due_date = models.DateField(default=default_due_date)

    # Invoice-level discount, applied to the subtotal (percentage first)
    discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO), MaxValueValidator(Decimal('100.00'))]
    )
    discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    discount_reason = models.CharField(max_length=255, blank=True)

    # Derived totals
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    total_discount = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    total_tax = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    grand_total = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    amount_paid = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    balance_due = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='unpaid')

    notes = models.TextField(blank=True)
    terms = models.TextField(blank=True)

    created_by_id = models.CharField(max_length=64, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by_id = models.CharField(max_length=64, blank=True)
    cancellation_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'invoices'
        ordering = ['-created_at']
        verbose_name = 'Invoice'
        verbose_name_plural = 'Invoices'
        indexes = [
            models.Index(fields=['patient', 'payment_status'], name='invoice_patient_pay_idx'),
            models.Index(fields=['clinic', 'invoice_date'], name='invoice_clinic_date_idx'),
            models.Index(fields=['status', 'due_date'], name='invoice_status_due_idx'),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.grand_total}"

    @property
    def is_draft(self):
        return self.status == 'draft'

    def recalculate(self, save=True):
        """
        Recompute every item and the invoice totals from scratch.

        Safe to call any number of times; the result depends only on the
        items, the discount fields and amount_paid.
        """
        items = list(self.items.all()) if self.pk else []
        for item in items:
            item.calculate()
        if items:
            InvoiceItem.objects.bulk_update(items, ['amount', 'tax_amount', 'total'])

        subtotal = sum((item.amount for item in items), ZERO)
        total_tax = sum((item.tax_amount for item in items), ZERO)
        item_discounts = sum((item.discount_total for item in items), ZERO)

        discounted = subtotal
        if self.discount_percentage and self.discount_percentage > 0:
            discounted -= discounted * Decimal(self.discount_percentage) / HUNDRED
        if self.discount_amount and self.discount_amount > 0:
            discounted -= Decimal(self.discount_amount)

        self.subtotal = to_money(subtotal)
        self.total_tax = to_money(total_tax)
        self.total_discount = to_money(item_discounts + (subtotal - max(discounted, ZERO)))
        self.grand_total = max(ZERO, round_rupee(discounted + total_tax))

        amount_paid = Decimal(self.amount_paid or 0)
        self.balance_due = to_money(max(ZERO, self.grand_total - amount_paid))
        self.payment_status = derive_payment_status(amount_paid, self.grand_total)
        self.status = derive_status(self.status, self.payment_status)

        if save:
            self.save(update_fields=[
                'subtotal', 'total_tax', 'total_discount', 'grand_total',
                'balance_due', 'payment_status', 'status', 'updated_at',
            ])
        return self

    # ---- Draft editing ----

    def require_draft(self):
        if self.status != 'draft':
            raise InvalidOperation("Only draft invoices can be modified")

    def membership_item_defaults(self, item_data):
        """
        Default an item's discount percentage to the patient's membership
        discount when the caller did not give one.
        """
        item_data = dict(item_data)
        if not item_data.get('discount_percentage'):
            discount = self.patient.current_discount
            if discount > 0:
                item_data['discount_percentage'] = discount
        return item_data

    def _next_position(self):
        last = self.items.order_by('-position').values_list('position', flat=True).first()
        return 0 if last is None else last + 1

    @transaction.atomic
    def add_item(self, item_data, recalculate=True):
        self.require_draft()
        item_data = self.membership_item_defaults(item_data)
        reference = item_data.pop('reference', None)
        item = InvoiceItem(invoice=self, position=self._next_position(), **item_data)
        if reference is not None:
            item.reference = reference
        item.save()
        if recalculate:
            self.recalculate()
        return item

    @transaction.atomic
    def remove_item(self, item_id):
        self.require_draft()
        deleted, _ = self.items.filter(pk=item_id).delete()
        if not deleted:
            raise NotFound("Invoice item not found")
        return self.recalculate()

    @transaction.atomic
    def replace_items(self, items_data):
        self.require_draft()
        self.items.all().delete()
        for item_data in items_data:
            self.add_item(item_data, recalculate=False)
        return self.recalculate()

    # ---- Lifecycle ----

    @transaction.atomic
    def issue(self):
        if self.status != 'draft':
            raise InvalidOperation("Only draft invoices can be issued")
        if not self.items.exists():
            raise InvalidOperation("Cannot issue invoice with no items")

        self.status = 'sent'
        # Writes status and payment_status together; a zero total issues as paid.
        self.recalculate()
        logger.info(f"Invoice {self.invoice_number} issued for {self.grand_total}")
        return self

    @transaction.atomic
    def cancel(self, actor_id='', reason=None):
        if self.status == 'cancelled':
            raise InvalidOperation("Invoice is already cancelled")
        if self.amount_paid > 0 and self.payment_status == 'paid':
            raise InvalidOperation("Cannot cancel a fully paid invoice")
        if self.amount_paid > 0:
            raise InvalidOperation("Invoice has payments recorded. Please process refunds first.")
        if self.pk and self.payments.filter(payment_mode='razorpay', status='pending').exists():
            raise InvalidOperation("Invoice has online payments in progress. Try again once they settle.")

        self.status = 'cancelled'
        self.cancelled_at = timezone.now()
        self.cancelled_by_id = actor_id or ''
        self.cancellation_reason = reason or 'Cancelled by admin'
        self.save(update_fields=[
            'status', 'cancelled_at', 'cancelled_by_id', 'cancellation_reason', 'updated_at'
        ])
        logger.info(f"Invoice {self.invoice_number} cancelled by {actor_id or 'system'}")
        return self

    # ---- Payments (called by the payments reconciler with the row locked) ----

    def check_payable(self, amount):
        amount = Decimal(amount)
        if self.status == 'cancelled':
            raise InvalidOperation("Cannot record payment for cancelled invoice")
        if self.status == 'draft':
            raise InvalidOperation("Invoice must be issued before recording payments")
        if self.payment_status == 'paid':
            raise InvalidOperation("Invoice is already fully paid")
        if amount > self.balance_due:
            raise ExceedsBalance(
                f"Payment amount ({amount}) exceeds balance due ({self.balance_due})"
            )

    def apply_payment(self, amount):
        self.check_payable(amount)
        self.amount_paid = to_money(Decimal(self.amount_paid) + Decimal(amount))
        self.save(update_fields=['amount_paid', 'updated_at'])
        return self.recalculate()

    def reverse_payment(self, amount):
        self.amount_paid = to_money(max(ZERO, Decimal(self.amount_paid) - Decimal(amount)))
        self.save(update_fields=['amount_paid', 'updated_at'])
        return self.recalculate()


class InvoiceItem(models.Model):
    """One billable line on an invoice."""

    ITEM_TYPE_CHOICES = [
        ('treatment', 'Treatment'),
        ('test', 'Test'),
        ('opd_fee', 'OPD Fee'),
        ('membership', 'Membership'),
        ('other', 'Other'),
    ]

    REFERENCE_KIND_CHOICES = [
        ('treatment', 'Treatment'),
        ('test', 'Test'),
        ('appointment', 'Appointment'),
        ('membership', 'Membership'),
    ]

    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.CASCADE,
        related_name='items'
    )
    item_type = models.CharField(max_length=20, choices=ITEM_TYPE_CHOICES, default='other')

    reference_kind = models.CharField(max_length=20, choices=REFERENCE_KIND_CHOICES, blank=True)
    reference_id = models.PositiveIntegerField(null=True, blank=True)

    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(ZERO)]
    )
    discount_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO), MaxValueValidator(Decimal('100.00'))]
    )
    discount_amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    tax_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO), MaxValueValidator(Decimal('100.00'))]
    )

    # Derived
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    tax_amount = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)
    total = models.DecimalField(max_digits=10, decimal_places=2, default=ZERO)

    position = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'invoice_items'
        ordering = ['position', 'id']
        verbose_name = 'Invoice Item'
        verbose_name_plural = 'Invoice Items'
        constraints = [
            models.CheckConstraint(
                condition=(
                    (Q(reference_kind='') & Q(reference_id__isnull=True))
                    | (~Q(reference_kind='') & Q(reference_id__isnull=False))
                ),
                name='invoice_item_reference_pair',
            ),
        ]

    def __str__(self):
        return f"{self.description} x{self.quantity}"

    @property
    def reference(self):
        """ItemReference(kind, id) for the billed entity, or None."""
        if self.reference_kind and self.reference_id is not None:
            return ItemReference(self.reference_kind, self.reference_id)
        return None

    @reference.setter
    def reference(self, value):
        if value is None:
            self.reference_kind, self.reference_id = '', None
        else:
            self.reference_kind, self.reference_id = value

    @property
    def gross(self):
        return Decimal(self.unit_price) * self.quantity

    @property
    def discount_total(self):
        return max(ZERO, self.gross - Decimal(self.amount))

    def calculate(self):
        """amount = max(0, price*qty - pct - flat); total = amount + tax."""
        amount = self.gross
        if self.discount_percentage and self.discount_percentage > 0:
            amount -= amount * Decimal(self.discount_percentage) / HUNDRED
        if self.discount_amount and self.discount_amount > 0:
            amount -= Decimal(self.discount_amount)

        self.amount = to_money(max(ZERO, amount))
        self.tax_amount = to_money(self.amount * Decimal(self.tax_rate) / HUNDRED)
        self.total = self.amount + self.tax_amount
        return self

    def save(self, *args, **kwargs):
        self.calculate()
        super().save(*args, **kwargs)
