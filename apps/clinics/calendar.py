"""
Clinic calendar: which days a clinic is open and the bookable slot grid.

`slots_for()` has no side effects; `availability()` overlays the slots
already held by non-cancelled appointments.
"""
from datetime import date as date_cls, datetime, timedelta

from django.apps import apps
from django.utils import timezone
from django.utils.dateparse import parse_date as django_parse_date

from common.exceptions import InvalidInput

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def clinic_today():
    """Today's date in the clinic time zone (settings.TIME_ZONE)."""
    return timezone.localdate()


def day_of_week(day):
    """0=Sunday .. 6=Saturday, matching ClinicOperatingHours.day_of_week."""
    return (day.weekday() + 1) % 7


def parse_date(value, field='date'):
    """Parse a YYYY-MM-DD string (or pass a date through); InvalidInput otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date_cls):
        return value
    parsed = None
    if value:
        try:
            parsed = django_parse_date(str(value))
        except ValueError:
            parsed = None
    if parsed is None:
        raise InvalidInput(f"Invalid {field}. Use YYYY-MM-DD format.")
    return parsed


def generate_slots(open_time, close_time, duration_minutes):
    """
    Slot start times from open_time up to close_time.

    The first slot starts at open_time; a final slot that would run past
    close_time is dropped.
    """
    anchor = date_cls(2000, 1, 1)
    current = datetime.combine(anchor, open_time)
    end = datetime.combine(anchor, close_time)
    step = timedelta(minutes=duration_minutes)

    slots = []
    while current + step <= end:
        slots.append(current.strftime('%H:%M'))
        current += step
    return slots


def slots_for(clinic, day):
    """
    Bookable slots for `clinic` on `day`.

    Returns {'date', 'is_open', 'reason', 'slots'}; closed days and holidays
    come back with is_open False, a reason and no slots.
    """
    day = parse_date(day)
    result = {'date': day.isoformat(), 'is_open': False, 'reason': None, 'slots': []}

    hours = clinic.operating_hours.filter(day_of_week=day_of_week(day)).first()
    if hours is None or not hours.is_open or not hours.open_time or not hours.close_time:
        result['reason'] = f"Clinic is closed on {DAY_NAMES[day_of_week(day)]}"
        return result

    holiday = clinic.holidays.filter(date=day).first()
    if holiday is not None:
        result['reason'] = f"Holiday: {holiday.reason}"
        return result

    result['is_open'] = True
    result['slots'] = generate_slots(hours.open_time, hours.close_time, clinic.slot_duration)
    return result


def booked_slots(clinic, day, exclude_pk=None):
    """Time slots on `day` held by non-cancelled appointments."""
    Appointment = apps.get_model('appointments', 'Appointment')
    queryset = Appointment.objects.filter(clinic=clinic, date=day).exclude(status='cancelled')
    if exclude_pk is not None:
        queryset = queryset.exclude(pk=exclude_pk)
    return set(queryset.values_list('time_slot', flat=True))


def availability(clinic, day):
    """slots_for() plus booked/available breakdown for the day."""
    schedule = slots_for(clinic, day)
    booked = booked_slots(clinic, parse_date(day)) if schedule['is_open'] else set()

    available = [slot for slot in schedule['slots'] if slot not in booked]
    schedule.update({
        'total_slots': len(schedule['slots']),
        'booked_slots': sorted(booked),
        'available_slots': available,
    })
    return schedule
