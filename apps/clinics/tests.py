# apps/clinics/tests.py

from datetime import date, time, timedelta

from django.test import TestCase
from rest_framework.test import APIClient

from apps.clinics.calendar import (
    availability,
    clinic_today,
    day_of_week,
    generate_slots,
    parse_date,
    slots_for,
)
from apps.clinics.models import Clinic, ClinicHoliday
from common.exceptions import InvalidInput
from common.testing import auth_header, make_clinic, make_patient, next_weekday


class SlotGenerationTestCase(TestCase):
    """Pure slot grid arithmetic"""

    def test_full_weekday_grid(self):
        slots = generate_slots(time(9, 0), time(20, 0), 30)
        self.assertEqual(len(slots), 22)
        self.assertEqual(slots[0], '09:00')
        self.assertEqual(slots[-1], '19:30')

    def test_partial_last_slot_is_dropped(self):
        self.assertEqual(generate_slots(time(9, 0), time(10, 10), 30), ['09:00', '09:30'])

    def test_window_shorter_than_slot(self):
        self.assertEqual(generate_slots(time(9, 0), time(9, 20), 30), [])

    def test_day_of_week_starts_on_sunday(self):
        self.assertEqual(day_of_week(date(2024, 10, 20)), 0)  # Sunday
        self.assertEqual(day_of_week(date(2024, 10, 21)), 1)
        self.assertEqual(day_of_week(date(2024, 10, 26)), 6)

    def test_parse_date(self):
        self.assertEqual(parse_date('2024-10-19'), date(2024, 10, 19))
        with self.assertRaises(InvalidInput):
            parse_date('19/10/2024')
        with self.assertRaises(InvalidInput):
            parse_date(None)


class ClinicCalendarTestCase(TestCase):
    """Open days, holidays and booked-slot overlay"""

    def setUp(self):
        self.clinic = make_clinic('DC01')

    def test_sunday_is_closed_by_default(self):
        result = slots_for(self.clinic, next_weekday(0))
        self.assertFalse(result['is_open'])
        self.assertEqual(result['reason'], 'Clinic is closed on Sunday')
        self.assertEqual(result['slots'], [])

    def test_saturday_half_day(self):
        result = slots_for(self.clinic, next_weekday(6))
        self.assertTrue(result['is_open'])
        self.assertEqual(len(result['slots']), 10)
        self.assertEqual(result['slots'][-1], '13:30')

    def test_holiday_closes_an_open_day(self):
        monday = next_weekday(1)
        ClinicHoliday.objects.create(clinic=self.clinic, date=monday, reason='Diwali')

        result = slots_for(self.clinic, monday)
        self.assertFalse(result['is_open'])
        self.assertEqual(result['reason'], 'Holiday: Diwali')

    def test_slot_duration_changes_grid(self):
        self.clinic.slot_duration = 60
        self.clinic.save()
        self.assertEqual(len(slots_for(self.clinic, next_weekday(1))['slots']), 11)

    def test_availability_excludes_live_bookings(self):
        from apps.appointments.models import Appointment

        monday = next_weekday(1)
        patient = make_patient()
        Appointment.objects.create(
            appointment_number='DC01-T-0001', patient=patient, clinic=self.clinic,
            date=monday, time_slot='09:00', reason='Checkup',
        )
        Appointment.objects.create(
            appointment_number='DC01-T-0002', patient=patient, clinic=self.clinic,
            date=monday, time_slot='09:30', reason='Checkup', status='cancelled',
        )

        result = availability(self.clinic, monday)
        self.assertEqual(result['booked_slots'], ['09:00'])
        self.assertNotIn('09:00', result['available_slots'])
        self.assertIn('09:30', result['available_slots'])
        self.assertEqual(result['total_slots'], 22)


class ClinicAPITestCase(TestCase):
    """Clinic endpoints"""

    def setUp(self):
        self.client = APIClient()
        self.headers = auth_header()

    def test_create_clinic_with_default_hours(self):
        response = self.client.post('/api/clinics/', {
            'name': 'DentalCare Sector 14',
            'code': 'dc14',
            'phone': '9812345678',
            'city': 'Gurugram',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['code'], 'DC14')
        self.assertEqual(len(data['operating_hours']), 7)
        sunday = [row for row in data['operating_hours'] if row['day_of_week'] == 0][0]
        self.assertFalse(sunday['is_open'])

    def test_duplicate_code_conflicts(self):
        make_clinic('DC01')
        response = self.client.post('/api/clinics/', {
            'name': 'Another', 'code': 'dc01', 'phone': '9812345679',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['kind'], 'conflict')
        self.assertEqual(Clinic.objects.count(), 1)

    def test_replace_operating_hours(self):
        clinic = make_clinic('DC01')
        response = self.client.put(f'/api/clinics/{clinic.id}/operating-hours/', {
            'operating_hours': [
                {'day_of_week': 1, 'is_open': True, 'open_time': '10:00', 'close_time': '12:00'},
                {'day_of_week': 2, 'is_open': False},
            ]
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(clinic.operating_hours.count(), 2)
        self.assertEqual(slots_for(clinic, next_weekday(1))['slots'], ['10:00', '10:30', '11:00', '11:30'])
        self.assertFalse(slots_for(clinic, next_weekday(3))['is_open'])

    def test_operating_hours_reject_inverted_window(self):
        clinic = make_clinic('DC01')
        response = self.client.put(f'/api/clinics/{clinic.id}/operating-hours/', {
            'operating_hours': [
                {'day_of_week': 1, 'is_open': True, 'open_time': '12:00', 'close_time': '10:00'},
            ]
        }, format='json', **self.headers)
        self.assertEqual(response.status_code, 400)

    def test_add_holiday_twice_conflicts(self):
        clinic = make_clinic('DC01')
        url = f'/api/clinics/{clinic.id}/holidays/'
        holiday = (clinic_today() + timedelta(days=10)).isoformat()

        first = self.client.post(url, {'date': holiday, 'reason': 'Holi'}, format='json', **self.headers)
        self.assertEqual(first.status_code, 201)

        second = self.client.post(url, {'date': holiday}, format='json', **self.headers)
        self.assertEqual(second.status_code, 409)

    def test_remove_holiday(self):
        clinic = make_clinic('DC01')
        holiday = ClinicHoliday.objects.create(clinic=clinic, date=next_weekday(1))

        response = self.client.delete(f'/api/clinics/{clinic.id}/holidays/{holiday.id}/', **self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(clinic.holidays.exists())

        missing = self.client.delete(f'/api/clinics/{clinic.id}/holidays/{holiday.id}/', **self.headers)
        self.assertEqual(missing.status_code, 404)

    def test_slots_endpoint(self):
        clinic = make_clinic('DC01')
        monday = next_weekday(1)

        response = self.client.get(f'/api/clinics/{clinic.id}/slots/', {'date': monday.isoformat()}, **self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['data']['available_slots']), 22)

    def test_slots_for_past_date_rejected(self):
        clinic = make_clinic('DC01')
        yesterday = (clinic_today() - timedelta(days=1)).isoformat()

        response = self.client.get(f'/api/clinics/{clinic.id}/slots/', {'date': yesterday}, **self.headers)
        self.assertEqual(response.status_code, 400)

    def test_destroy_deactivates(self):
        clinic = make_clinic('DC01')
        response = self.client.delete(f'/api/clinics/{clinic.id}/', **self.headers)

        self.assertEqual(response.status_code, 200)
        clinic.refresh_from_db()
        self.assertFalse(clinic.is_active)
