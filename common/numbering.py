"""
Human-readable identifiers for appointments, invoices and payments.

Formats:
    appointment  {CLINIC_CODE}-{YY}{MM}-{serial:04d}   per clinic per month
    invoice      INV-{YY}{MM}-{serial:04d}              per month
    payment      PAY-{YY}{MM}-{serial:04d}              per month
    token        1-based queue position                 per clinic per day

Serials come from `SequenceCounter`, seeded from a count of the numbers
already stored in the scope the first time a scope is used.
"""
from django.apps import apps
from django.db import transaction
from django.utils import timezone

from .models import SequenceCounter


def month_code(when=None):
    """YYMM for the clinic-local date of `when` (defaults to now)."""
    when = when or timezone.now()
    if hasattr(when, 'tzinfo') and timezone.is_aware(when):
        when = timezone.localtime(when)
    return when.strftime('%y%m')


def _count_prefixed(app_label, model_name, field, prefix):
    model = apps.get_model(app_label, model_name)
    return lambda: model.objects.filter(**{f'{field}__startswith': prefix}).count()


def next_appointment_number(clinic, when=None):
    prefix = f"{clinic.code}-{month_code(when)}-"
    serial = SequenceCounter.next_value(
        f"appointment:{clinic.pk}:{month_code(when)}",
        seed=_count_prefixed('appointments', 'Appointment', 'appointment_number', prefix),
    )
    return f"{prefix}{serial:04d}"


def next_invoice_number(when=None):
    prefix = f"INV-{month_code(when)}-"
    serial = SequenceCounter.next_value(
        f"invoice:{month_code(when)}",
        seed=_count_prefixed('billing', 'Invoice', 'invoice_number', prefix),
    )
    return f"{prefix}{serial:04d}"


def next_payment_number(when=None):
    prefix = f"PAY-{month_code(when)}-"
    serial = SequenceCounter.next_value(
        f"payment:{month_code(when)}",
        seed=_count_prefixed('payments', 'Payment', 'payment_number', prefix),
    )
    return f"{prefix}{serial:04d}"


def next_token_number(clinic, date, exclude_pk=None):
    """
    Queue position for a new or moved appointment on `date`.

    Counts non-cancelled appointments for the clinic and day while holding
    the day's counter row, so it must run inside the transaction that
    writes the appointment.
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("next_token_number() must be called inside transaction.atomic()")

    Appointment = apps.get_model('appointments', 'Appointment')
    counter = SequenceCounter.lock(f"token:{clinic.pk}:{date.isoformat()}")

    active = Appointment.objects.filter(clinic=clinic, date=date).exclude(status='cancelled')
    if exclude_pk is not None:
        active = active.exclude(pk=exclude_pk)
    token = active.count() + 1

    if token > counter.value:
        SequenceCounter.objects.filter(pk=counter.pk).update(value=token)
    return token
