# appointments/models.py
import logging
from decimal import Decimal

from django.core.validators import MinValueValidator, RegexValidator
from django.db import models, transaction
from django.db.models import Q
from django.utils import timezone

from common.exceptions import InvalidOperation, InvalidTransition

logger = logging.getLogger(__name__)


# Legal moves for the generic status endpoint. check_in/start/complete/
# cancel/reschedule carry their own preconditions below.
ALLOWED_TRANSITIONS = {
    'scheduled': {'confirmed', 'cancelled'},
    'confirmed': {'checked_in', 'cancelled', 'no_show'},
    'checked_in': {'in_progress', 'cancelled'},
    'in_progress': {'completed'},
    'completed': set(),
    'cancelled': set(),
    'no_show': set(),
}

TERMINAL_STATUSES = {'completed', 'cancelled', 'no_show'}


class Appointment(models.Model):
    """
    A booked slot at a clinic.

    At most one non-cancelled appointment may hold a given
    (clinic, date, time_slot); the database enforces it through
    `uniq_active_clinic_slot`.
    """

    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('confirmed', 'Confirmed'),
        ('checked_in', 'Checked In'),
        ('in_progress', 'In Progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('no_show', 'No Show'),
    ]

    TYPE_CHOICES = [
        ('regular', 'Regular'),
        ('emergency', 'Emergency'),
        ('follow_up', 'Follow Up'),
    ]

    SOURCE_CHOICES = [
        ('walk_in', 'Walk In'),
        ('phone', 'Phone'),
        ('online', 'Online'),
        ('app', 'App'),
    ]

    # Primary Fields
    appointment_number = models.CharField(max_length=40, unique=True, editable=False)

    patient = models.ForeignKey(
        'patients.Patient',
        on_delete=models.PROTECT,
        related_name='appointments'
    )
    clinic = models.ForeignKey(
        'clinics.Clinic',
        on_delete=models.PROTECT,
        related_name='appointments'
    )

    # Scheduling
    date = models.DateField()
    time_slot = models.CharField(
        max_length=5,
        validators=[RegexValidator(r'^([01]\d|2[0-3]):[0-5]\d$', 'Time slot must be HH:MM')]
    )
    token_number = models.PositiveIntegerField(default=1)

    type = models.CharField(max_length=20, choices=TYPE_CHOICES, default='regular')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='scheduled')
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='walk_in')

    reason = models.TextField()
    notes = models.TextField(blank=True)

    # Visit timing
    check_in_time = models.DateTimeField(null=True, blank=True)
    start_time = models.DateTimeField(null=True, blank=True)
    end_time = models.DateTimeField(null=True, blank=True)

    # Cancellation
    cancellation_reason = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by_id = models.CharField(max_length=64, blank=True)

    # OPD fee
    opd_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('300.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    opd_fee_paid = models.BooleanField(default=False)

    reminder_sent = models.BooleanField(default=False)
    created_by_id = models.CharField(max_length=64, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'appointments'
        ordering = ['-date', 'time_slot']
        verbose_name = 'Appointment'
        verbose_name_plural = 'Appointments'
        indexes = [
            models.Index(fields=['clinic', 'date'], name='appt_clinic_date_idx'),
            models.Index(fields=['patient', 'date'], name='appt_patient_date_idx'),
            models.Index(fields=['status'], name='appt_status_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'date', 'time_slot'],
                condition=~Q(status='cancelled'),
                name='uniq_active_clinic_slot',
            ),
        ]

    def __str__(self):
        return f"{self.appointment_number} - {self.date} {self.time_slot}"

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def _lock(self):
        """Re-read the row under a lock so state checks see the committed status."""
        locked = type(self).objects.select_for_update().get(pk=self.pk)
        self.status = locked.status
        self.date = locked.date
        self.time_slot = locked.time_slot
        self.notes = locked.notes
        return self

    def _record(self, reason, actor_id):
        return AppointmentStatusHistory.objects.create(
            appointment=self,
            status=self.status,
            reason=reason,
            changed_by_id=actor_id or '',
        )

    def _apply_status(self, new_status, reason, actor_id, extra_fields=()):
        old_status = self.status
        self.status = new_status
        self.save(update_fields=['status', 'updated_at', *extra_fields])
        self._record(reason, actor_id)
        logger.info(
            f"Appointment {self.appointment_number}: {old_status} -> {new_status} "
            f"by {actor_id or 'system'}"
        )
        return self

    @transaction.atomic
    def transition_to(self, new_status, reason=None, actor_id=''):
        """
        Move to `new_status` if ALLOWED_TRANSITIONS permits it.

        Illegal moves raise InvalidTransition and leave the row and its
        history untouched.
        """
        self._lock()
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidTransition(f"Cannot change status from {self.status} to {new_status}")

        now = timezone.now()
        extra = []
        if new_status == 'checked_in':
            self.check_in_time = now
            extra.append('check_in_time')
        elif new_status == 'in_progress':
            self.start_time = now
            extra.append('start_time')
        elif new_status == 'completed':
            self.end_time = now
            extra.append('end_time')
        elif new_status == 'cancelled':
            self.cancelled_at = now
            self.cancelled_by_id = actor_id or ''
            self.cancellation_reason = reason or 'Cancelled by clinic'
            extra.extend(['cancelled_at', 'cancelled_by_id', 'cancellation_reason'])

        return self._apply_status(
            new_status,
            reason or f"Status changed to {new_status}",
            actor_id,
            extra,
        )

    @transaction.atomic
    def check_in(self, actor_id='', reason=None):
        from apps.clinics.calendar import clinic_today

        self._lock()
        if self.status not in ('scheduled', 'confirmed'):
            raise InvalidOperation(f"Cannot check in appointment with status {self.status}")
        if self.date != clinic_today():
            raise InvalidOperation("Can only check in appointments scheduled for today")

        self.check_in_time = timezone.now()
        return self._apply_status('checked_in', reason or 'Patient arrived', actor_id, ['check_in_time'])

    @transaction.atomic
    def start(self, actor_id='', reason=None):
        self._lock()
        if self.status != 'checked_in':
            raise InvalidOperation("Patient must be checked in before starting treatment")

        self.start_time = timezone.now()
        return self._apply_status('in_progress', reason or 'Treatment started', actor_id, ['start_time'])

    @transaction.atomic
    def complete(self, actor_id='', notes=None, prescriptions=None):
        self._lock()
        if self.status not in ('checked_in', 'in_progress'):
            raise InvalidOperation(f"Cannot complete appointment with status {self.status}")

        self.end_time = timezone.now()
        extra = ['end_time']
        if notes or prescriptions:
            clinical = f"Clinical Notes: {notes or ''}\nPrescriptions: {prescriptions or ''}"
            self.notes = f"{self.notes}\n{clinical}" if self.notes else clinical
            extra.append('notes')
        return self._apply_status('completed', 'Treatment completed', actor_id, extra)

    @transaction.atomic
    def cancel(self, actor_id='', reason=None):
        self._lock()
        if self.status == 'cancelled':
            raise InvalidOperation("Appointment already cancelled")
        if self.status in TERMINAL_STATUSES:
            raise InvalidOperation(f"Cannot cancel a {self.status} appointment")

        reason = reason or 'Cancelled by clinic'
        self.cancelled_at = timezone.now()
        self.cancelled_by_id = actor_id or ''
        self.cancellation_reason = reason
        return self._apply_status(
            'cancelled', reason, actor_id,
            ['cancelled_at', 'cancelled_by_id', 'cancellation_reason']
        )

    @transaction.atomic
    def reschedule(self, new_date, new_time_slot, reason='', actor_id=''):
        """
        Move to a new date/slot and restart the lifecycle at `scheduled`.

        The new slot goes through the same checks as a booking, excluding
        this appointment, and the token number is re-derived for the new day.
        """
        from common.numbering import next_token_number
        from .slots import SlotAllocator

        self._lock()
        if self.status in ('cancelled', 'completed'):
            raise InvalidOperation(f"Cannot reschedule a {self.status} appointment")

        allocator = SlotAllocator(self.clinic)
        new_date = allocator.check_bookable(new_date, new_time_slot, exclude_pk=self.pk)

        self.date = new_date
        self.time_slot = new_time_slot
        self.token_number = next_token_number(self.clinic, new_date, exclude_pk=self.pk)
        note = f"Rescheduled: {reason}" if reason else "Rescheduled"
        self.notes = f"{self.notes}\n{note}" if self.notes else note
        self.status = 'scheduled'
        allocator.commit(self, update_fields=['date', 'time_slot', 'token_number', 'notes', 'status', 'updated_at'])

        self._record(note, actor_id)
        logger.info(
            f"Appointment {self.appointment_number} rescheduled to {new_date} {new_time_slot} "
            f"(token {self.token_number})"
        )
        return self


class AppointmentStatusHistory(models.Model):
    """Append-only log of every status an appointment has held."""

    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.CASCADE,
        related_name='status_history'
    )
    status = models.CharField(max_length=20, choices=Appointment.STATUS_CHOICES)
    reason = models.TextField(blank=True)
    changed_by_id = models.CharField(max_length=64, blank=True)
    changed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'appointment_status_history'
        ordering = ['changed_at', 'id']
        verbose_name = 'Appointment Status History'
        verbose_name_plural = 'Appointment Status History'

    def __str__(self):
        return f"{self.appointment_id}: {self.status} at {self.changed_at}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise InvalidOperation("Status history entries cannot be modified")
        super().save(*args, **kwargs)
