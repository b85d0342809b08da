"""
Fixtures shared by the app test suites.
"""
from datetime import timedelta

import jwt
from django.conf import settings

from apps.clinics.calendar import clinic_today, day_of_week


def auth_header(user_id='staff-1', is_super_admin=True, permissions=None, enabled_modules=None):
    """HTTP_AUTHORIZATION kwargs for APIClient calls with a staff token."""
    payload = {
        'user_id': user_id,
        'email': f'{user_id}@dentalcare.test',
        'is_super_admin': is_super_admin,
        'permissions': permissions or {},
        'enabled_modules': ['dental'] if enabled_modules is None else enabled_modules,
    }
    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return {'HTTP_AUTHORIZATION': f'Bearer {token}'}


def make_clinic(code='DC01', **kwargs):
    """Clinic with the default weekly hours (Sunday closed)."""
    from apps.clinics.models import Clinic

    defaults = {'name': f'DentalCare {code}', 'phone': '9812345678'}
    defaults.update(kwargs)
    clinic = Clinic.objects.create(code=code, **defaults)
    clinic.create_default_hours()
    return clinic


def make_patient(phone='9876543210', **kwargs):
    from apps.patients.models import Patient

    defaults = {'name': 'Asha Verma'}
    defaults.update(kwargs)
    return Patient.objects.create(phone=phone, **defaults)


def next_weekday(dow=1, after=None):
    """First date strictly after `after` (default today) with day_of_week `dow` (0=Sunday)."""
    day = (after or clinic_today()) + timedelta(days=1)
    while day_of_week(day) != dow:
        day += timedelta(days=1)
    return day
