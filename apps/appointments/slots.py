"""
Slot reservation for appointments.

`SlotAllocator.check_bookable()` locks the clinic row and runs the booking
preconditions in order, so concurrent bookings for one clinic are checked
one at a time against the daily cap. `commit()` writes the appointment inside
a savepoint, turning a lost race on the `uniq_active_clinic_slot` constraint
into SlotUnavailable. A failed commit leaves nothing behind.
"""
import logging

from django.db import IntegrityError, transaction

from apps.clinics.calendar import booked_slots, clinic_today, parse_date, slots_for
from apps.clinics.models import Clinic
from common.exceptions import InvalidInput, InvalidOperation, SlotUnavailable

logger = logging.getLogger(__name__)


class SlotAllocator:
    def __init__(self, clinic):
        self.clinic = clinic

    def check_open(self, day, time_slot):
        schedule = slots_for(self.clinic, day)
        if not schedule['is_open']:
            raise InvalidOperation(f"Clinic is not open on this date. {schedule['reason']}")
        if time_slot not in schedule['slots']:
            raise InvalidOperation("Invalid time slot")

    def check_capacity(self, day, exclude_pk=None):
        from .models import Appointment

        active = Appointment.objects.filter(clinic=self.clinic, date=day).exclude(status='cancelled')
        if exclude_pk is not None:
            active = active.exclude(pk=exclude_pk)
        if active.count() >= self.clinic.max_daily_appointments:
            raise InvalidOperation("Maximum appointments reached for this date")

    def is_free(self, day, time_slot, exclude_pk=None):
        return time_slot not in booked_slots(self.clinic, day, exclude_pk=exclude_pk)

    def reserve(self, day, time_slot, exclude_pk=None):
        """Raise SlotUnavailable if another live appointment holds the slot."""
        if not self.is_free(day, time_slot, exclude_pk=exclude_pk):
            raise SlotUnavailable("This time slot is already booked")

    def lock_clinic(self):
        """
        Re-read the clinic under a row lock. Bookings for the same clinic
        queue here, so the capacity count and slot check see each other's
        commits. Must run inside transaction.atomic().
        """
        self.clinic = Clinic.objects.select_for_update().get(pk=self.clinic.pk)
        return self.clinic

    def check_bookable(self, day, time_slot, exclude_pk=None):
        """All booking preconditions for (clinic, day, time_slot)."""
        self.lock_clinic()
        day = parse_date(day)
        if not self.clinic.is_active:
            raise InvalidOperation("Clinic is not active")
        if day < clinic_today():
            raise InvalidInput("Cannot book appointments for past dates")
        self.check_open(day, time_slot)
        self.check_capacity(day, exclude_pk=exclude_pk)
        self.reserve(day, time_slot, exclude_pk=exclude_pk)
        return day

    def commit(self, appointment, **save_kwargs):
        """Save `appointment`; a concurrent holder of the slot becomes SlotUnavailable."""
        try:
            with transaction.atomic():
                appointment.save(**save_kwargs)
        except IntegrityError:
            logger.info(
                f"Slot race lost for clinic {self.clinic.code} "
                f"{appointment.date} {appointment.time_slot}"
            )
            raise SlotUnavailable("This time slot is already booked")
        return appointment
