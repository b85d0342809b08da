"""
Payment reconciliation.

Every path that moves a payment to `paid` goes through `mark_paid()`, which
locks the payment and its invoice and applies the amount to the invoice in
the same transaction. `applied_to_invoice` makes a repeated call a no-op,
so verify and webhook can race without double counting. `refund_payment()`
reverses the application symmetrically.
"""
import logging
from decimal import Decimal

import razorpay
from django.db import transaction
from django.utils import timezone

from apps.appointments.models import Appointment
from apps.billing.models import Invoice
from common.exceptions import (
    ExceedsBalance,
    InvalidInput,
    InvalidOperation,
    NotFound,
    PaymentGatewayError,
    SignatureInvalid,
)
from common.numbering import next_payment_number
from .models import Payment
from .razorpay_utils import RazorpayClient

logger = logging.getLogger(__name__)

GATEWAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
)

# Captured by the gateway after the invoice stopped accepting it; refund only.
NOT_APPLIED_CODE = 'INVOICE_NOT_PAYABLE'


def _lock_invoice(invoice):
    if invoice is None:
        return None
    return Invoice.objects.select_for_update().get(pk=invoice.pk)


def _payment_type_for(invoice, payment_type):
    if payment_type:
        return payment_type
    return 'invoice_payment' if invoice is not None else 'advance'


def _from_paise(value):
    if value in (None, ''):
        return None
    return (Decimal(str(value)) / 100).quantize(Decimal('0.01'))


@transaction.atomic
def mark_paid(payment, **fields):
    """
    Move a pending payment to paid and apply it to its invoice once.

    Returns (payment, changed). A payment that is already paid is returned
    unchanged with changed=False.
    """
    payment = Payment.objects.select_for_update().get(pk=payment.pk)
    if payment.status == 'paid':
        return payment, False
    if payment.status != 'pending':
        raise InvalidOperation(f"Cannot mark a {payment.status} payment as paid")

    if payment.invoice_id and not payment.applied_to_invoice:
        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        invoice.apply_payment(payment.amount)
        payment.applied_to_invoice = True

    for name, value in fields.items():
        setattr(payment, name, value)
    payment.status = 'paid'
    payment.paid_at = timezone.now()
    payment.save()

    if payment.payment_type == 'opd_fee' and payment.appointment_id:
        Appointment.objects.filter(pk=payment.appointment_id).update(opd_fee_paid=True)

    logger.info(
        f"Payment {payment.payment_number} paid: {payment.amount} via {payment.payment_mode}"
        + (f" applied to invoice {payment.invoice_id}" if payment.invoice_id else "")
    )
    return payment, True


@transaction.atomic
def mark_failed(payment, error_code='', error_description='', **fields):
    """Move a pending payment to failed. Returns (payment, changed)."""
    payment = Payment.objects.select_for_update().get(pk=payment.pk)
    if payment.status != 'pending':
        return payment, False

    for name, value in fields.items():
        setattr(payment, name, value)
    payment.status = 'failed'
    payment.error_code = error_code or ''
    payment.error_description = error_description or 'Payment failed'
    payment.save()

    logger.info(f"Payment {payment.payment_number} failed: {payment.error_code} {payment.error_description}")
    return payment, True


def _capture_not_applied(payment, error, **fields):
    """
    Record a gateway capture the invoice refused (paid off or cancelled in
    the meantime). The money sits with the gateway, so the payment is left
    failed with NOT_APPLIED_CODE and stays refundable.
    """
    logger.warning(
        f"Razorpay capture for {payment.payment_number} not applied to invoice "
        f"{payment.invoice_id}: {error.detail}"
    )
    payment, _ = mark_failed(
        payment,
        error_code=NOT_APPLIED_CODE,
        error_description=f"{error.detail}. Refund required.",
        **fields
    )
    return payment


@transaction.atomic
def record_offline_payment(*, patient, clinic, amount, payment_mode, invoice=None,
                           appointment=None, payment_type=None, reference_number='',
                           notes='', received_by_id=''):
    """Create a cash/card/UPI/netbanking payment, paid immediately."""
    if payment_mode == 'razorpay':
        raise InvalidInput("Use the Razorpay order flow for online payments")

    invoice = _lock_invoice(invoice)
    if invoice is not None:
        if invoice.patient_id != patient.pk:
            raise InvalidInput("Invoice does not belong to this patient")
        invoice.check_payable(amount)

    payment = Payment.objects.create(
        payment_number=next_payment_number(),
        patient=patient,
        clinic=clinic,
        invoice=invoice,
        appointment=appointment,
        amount=amount,
        payment_mode=payment_mode,
        payment_type=_payment_type_for(invoice, payment_type),
        status='pending',
        reference_number=reference_number or '',
        received_by_id=received_by_id or '',
        notes=notes or '',
    )
    payment, _ = mark_paid(payment)
    return payment


def record_opd_fee_payment(*, appointment, payment_mode='cash', amount=None,
                           reference_number='', notes='', received_by_id=''):
    """Collect the OPD fee for an appointment and flag it as paid."""
    if appointment.opd_fee_paid:
        raise InvalidOperation("OPD fee already paid for this appointment")
    if appointment.status == 'cancelled':
        raise InvalidOperation("Cannot collect OPD fee for a cancelled appointment")

    amount = Decimal(amount) if amount is not None else appointment.opd_fee
    if amount < 1:
        raise InvalidInput("OPD fee amount must be at least 1")

    return record_offline_payment(
        patient=appointment.patient,
        clinic=appointment.clinic,
        amount=amount,
        payment_mode=payment_mode,
        appointment=appointment,
        payment_type='opd_fee',
        reference_number=reference_number,
        notes=notes,
        received_by_id=received_by_id,
    )


@transaction.atomic
def create_gateway_order(*, patient, clinic, amount, invoice=None, appointment=None,
                         payment_type=None, notes='', received_by_id='', client=None):
    """
    Open a Razorpay order and a pending payment correlated to it.

    Returns (payment, razorpay_order).
    """
    invoice = _lock_invoice(invoice)
    if invoice is not None:
        if invoice.patient_id != patient.pk:
            raise InvalidInput("Invoice does not belong to this patient")
        invoice.check_payable(amount)

    client = client or RazorpayClient()
    receipt = f"rcpt_{int(timezone.now().timestamp() * 1000)}"
    try:
        order = client.create_order(
            amount=amount,
            receipt=receipt,
            notes={
                'patient_id': str(patient.pk),
                'clinic_id': str(clinic.pk),
                'invoice_id': str(invoice.pk) if invoice else '',
            }
        )
    except GATEWAY_ERRORS as e:
        logger.error(f"Razorpay order creation failed for patient {patient.pk}: {e}")
        raise PaymentGatewayError(f"Failed to create payment order: {e}")

    payment = Payment.objects.create(
        payment_number=next_payment_number(),
        patient=patient,
        clinic=clinic,
        invoice=invoice,
        appointment=appointment,
        amount=amount,
        payment_mode='razorpay',
        payment_type=_payment_type_for(invoice, payment_type),
        status='pending',
        razorpay_order_id=order['id'],
        gateway_receipt=receipt,
        received_by_id=received_by_id or '',
        notes=notes or '',
    )
    logger.info(f"Razorpay order {order['id']} opened for payment {payment.payment_number} ({amount})")
    return payment, order


def verify_gateway_payment(*, razorpay_order_id, razorpay_payment_id, razorpay_signature, client=None):
    """
    Check the checkout signature and mark the payment paid.

    A bad signature fails the pending payment (committed before the error
    is raised) and raises SignatureInvalid. A valid capture the invoice no
    longer accepts is recorded as not applied before the invoice error is
    re-raised.
    """
    payment = Payment.objects.filter(razorpay_order_id=razorpay_order_id).first()
    if payment is None:
        raise NotFound("Payment not found for this order")

    client = client or RazorpayClient()
    if not client.verify_payment_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
        logger.warning(f"Razorpay signature mismatch for order {razorpay_order_id}")
        mark_failed(
            payment,
            error_code='SIGNATURE_INVALID',
            error_description='Payment signature verification failed',
            razorpay_payment_id=razorpay_payment_id or '',
        )
        raise SignatureInvalid("Payment signature verification failed")

    captured = {
        'razorpay_payment_id': razorpay_payment_id,
        'razorpay_signature': razorpay_signature,
    }
    try:
        payment, _ = mark_paid(payment, **captured)
    except (InvalidOperation, ExceedsBalance) as e:
        if payment.status != 'pending':
            raise
        _capture_not_applied(payment, e, **captured)
        raise
    return payment


def handle_webhook_event(event):
    """
    Apply a verified Razorpay webhook event. Returns a short outcome string.

    Events for unknown orders or payments that already left `pending` are
    acknowledged without change.
    """
    event_type = event.get('event')
    payload = event.get('payload', {})

    if event_type == 'refund.processed':
        refund = payload.get('refund', {}).get('entity', {})
        payment = Payment.objects.filter(razorpay_payment_id=refund.get('payment_id') or '').first()
        if payment is None or not refund.get('payment_id'):
            logger.info(f"Webhook refund.processed for unknown payment {refund.get('payment_id')}")
            return 'ignored'
        if payment.status == 'refunded' and not payment.razorpay_refund_id:
            Payment.objects.filter(pk=payment.pk).update(razorpay_refund_id=refund.get('id', ''))
            return 'updated'
        return 'unchanged'

    entity = payload.get('payment', {}).get('entity', {})
    order_id = entity.get('order_id')
    payment = Payment.objects.filter(razorpay_order_id=order_id).first() if order_id else None
    if payment is None:
        logger.info(f"Webhook {event_type} for unknown order {order_id}")
        return 'ignored'

    if event_type == 'payment.captured':
        changed = False
        if payment.status == 'pending':
            captured = {
                'razorpay_payment_id': entity.get('id', ''),
                'gateway_method': entity.get('method') or '',
                'gateway_bank': entity.get('bank') or '',
                'gateway_wallet': entity.get('wallet') or '',
                'gateway_vpa': entity.get('vpa') or '',
                'gateway_fee': _from_paise(entity.get('fee')),
                'gateway_tax': _from_paise(entity.get('tax')),
            }
            try:
                _, changed = mark_paid(payment, **captured)
            except (InvalidOperation, ExceedsBalance) as e:
                _capture_not_applied(payment, e, **captured)
                return 'not_applied'
    elif event_type == 'payment.failed':
        _, changed = mark_failed(
            payment,
            error_code=entity.get('error_code') or '',
            error_description=entity.get('error_description') or 'Payment failed',
            razorpay_payment_id=entity.get('id', ''),
        )
    else:
        logger.info(f"Webhook event {event_type} ignored for order {order_id}")
        return 'ignored'

    logger.info(f"Webhook {event_type} for order {order_id}: {'applied' if changed else 'unchanged'}")
    return 'updated' if changed else 'unchanged'


@transaction.atomic
def refund_payment(payment, amount=None, reason='', actor_id='', client=None):
    """
    Refund a paid payment (full by default) and take the amount back off
    its invoice.
    """
    payment = Payment.objects.select_for_update().get(pk=payment.pk)
    captured_unapplied = payment.status == 'failed' and payment.error_code == NOT_APPLIED_CODE
    if payment.status != 'paid' and not captured_unapplied:
        raise InvalidOperation("Only paid payments can be refunded")

    amount = Decimal(amount) if amount is not None else payment.amount
    if amount <= 0:
        raise InvalidInput("Refund amount must be greater than zero")
    if amount > payment.amount:
        raise ExceedsBalance(f"Refund amount ({amount}) exceeds payment amount ({payment.amount})")

    if payment.is_gateway and payment.razorpay_payment_id:
        client = client or RazorpayClient()
        try:
            refund = client.refund(payment.razorpay_payment_id, amount)
        except GATEWAY_ERRORS as e:
            logger.error(f"Razorpay refund failed for {payment.payment_number}: {e}")
            raise PaymentGatewayError(f"Refund failed: {e}")
        payment.razorpay_refund_id = refund.get('id', '')

    if payment.invoice_id and payment.applied_to_invoice:
        invoice = Invoice.objects.select_for_update().get(pk=payment.invoice_id)
        invoice.reverse_payment(amount)

    if payment.payment_type == 'opd_fee' and payment.appointment_id:
        Appointment.objects.filter(pk=payment.appointment_id).update(opd_fee_paid=False)

    payment.status = 'refunded'
    payment.refund_amount = amount
    payment.refund_reason = reason or ''
    payment.refunded_at = timezone.now()
    payment.refunded_by_id = actor_id or ''
    payment.save()

    logger.info(f"Payment {payment.payment_number} refunded: {amount}")
    return payment
