# apps/appointments/tests.py

import threading
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.db import connection, transaction
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature
from rest_framework.test import APIClient

from apps.appointments.models import ALLOWED_TRANSITIONS, Appointment, AppointmentStatusHistory
from apps.appointments.serializers import AppointmentCreateSerializer
from apps.appointments.slots import SlotAllocator
from apps.clinics.calendar import clinic_today
from apps.clinics.models import ClinicHoliday
from common.exceptions import InvalidOperation, InvalidTransition, SlotUnavailable
from common.testing import auth_header, make_clinic, make_patient, next_weekday


class AppointmentAPITestBase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.headers = auth_header(user_id='desk-1')
        self.clinic = make_clinic('DC01')
        self.patient = make_patient()
        self.monday = next_weekday(1)

    def book(self, time_slot='09:00', day=None, patient=None, **extra):
        payload = {
            'patient_id': (patient or self.patient).id,
            'clinic_id': self.clinic.id,
            'date': (day or self.monday).isoformat(),
            'time_slot': time_slot,
            'reason': 'Tooth pain',
        }
        payload.update(extra)
        return self.client.post('/api/appointments/', payload, format='json', **self.headers)

    def make_today(self, time_slot='10:00', status='scheduled'):
        """Appointment for today written directly (today may be a closed day)."""
        return Appointment.objects.create(
            appointment_number=f'DC01-T-{time_slot.replace(":", "")}',
            patient=self.patient,
            clinic=self.clinic,
            date=clinic_today(),
            time_slot=time_slot,
            reason='Cleaning',
            status=status,
        )


class BookingTestCase(AppointmentAPITestBase):
    """Slot allocation on create"""

    def test_book_appointment(self):
        response = self.book('09:00')

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], 'scheduled')
        self.assertEqual(data['token_number'], 1)
        self.assertEqual(Decimal(data['opd_fee']), Decimal('300.00'))
        self.assertTrue(data['appointment_number'].startswith('DC01-'))
        self.assertEqual(data['created_by_id'], 'desk-1')
        self.assertEqual(len(data['status_history']), 1)
        self.assertEqual(data['status_history'][0]['reason'], 'Appointment booked')

    def test_double_booking_conflicts(self):
        self.assertEqual(self.book('09:00').status_code, 201)

        other = make_patient(phone='9800000001')
        response = self.book('09:00', patient=other)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['kind'], 'slot_unavailable')
        self.assertEqual(Appointment.objects.filter(date=self.monday, time_slot='09:00').count(), 1)

    def test_cancelled_slot_can_be_rebooked(self):
        first = Appointment.objects.get(pk=self.book('09:00').json()['data']['id'])
        first.cancel(reason='Patient unwell')

        response = self.book('09:00', patient=make_patient(phone='9800000001'))
        self.assertEqual(response.status_code, 201)

    def test_tokens_follow_booking_order(self):
        tokens = [
            self.book(slot, patient=make_patient(phone=f'98000000{i:02d}')).json()['data']['token_number']
            for i, slot in enumerate(['11:00', '09:00', '10:00'])
        ]
        self.assertEqual(tokens, [1, 2, 3])

    def test_numbers_are_unique(self):
        numbers = set()
        for i, slot in enumerate(['09:00', '09:30', '10:00', '10:30', '11:00']):
            response = self.book(slot, patient=make_patient(phone=f'97000000{i:02d}'))
            numbers.add(response.json()['data']['appointment_number'])
        self.assertEqual(len(numbers), 5)

    def test_emergency_uses_emergency_fee(self):
        response = self.book('09:00', type='emergency')
        self.assertEqual(Decimal(response.json()['data']['opd_fee']), Decimal('500.00'))

    def test_closed_day_rejected(self):
        response = self.book('09:00', day=next_weekday(0))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['error'],
            'Clinic is not open on this date. Clinic is closed on Sunday'
        )

    def test_holiday_rejected(self):
        ClinicHoliday.objects.create(clinic=self.clinic, date=self.monday, reason='Diwali')
        response = self.book('09:00')

        self.assertEqual(response.status_code, 400)
        self.assertIn('Holiday: Diwali', response.json()['error'])

    def test_off_grid_slot_rejected(self):
        response = self.book('09:15')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid time slot')

    def test_malformed_slot_rejected(self):
        self.assertEqual(self.book('9am').status_code, 400)

    def test_past_date_rejected(self):
        response = self.book('09:00', day=clinic_today() - timedelta(days=1))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Cannot book appointments for past dates')

    def test_daily_capacity(self):
        self.clinic.max_daily_appointments = 1
        self.clinic.save()
        self.assertEqual(self.book('09:00').status_code, 201)

        response = self.book('10:00', patient=make_patient(phone='9800000001'))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Maximum appointments reached for this date')

    def test_inactive_clinic_rejected(self):
        self.clinic.is_active = False
        self.clinic.save()
        response = self.book('09:00')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Clinic is not active')

    def test_unknown_patient(self):
        response = self.book('09:00', patient_id=999999)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Patient not found')

    def test_lost_race_maps_to_slot_unavailable(self):
        """The database constraint catches a holder the pre-check missed."""
        self.assertEqual(self.book('09:00').status_code, 201)

        with patch.object(SlotAllocator, 'reserve', return_value=None):
            response = self.book('09:00', patient=make_patient(phone='9800000001'))

        self.assertEqual(response.status_code, 409)
        self.assertEqual(Appointment.objects.filter(date=self.monday, time_slot='09:00').count(), 1)

    def test_slot_constraint_rejects_second_live_holder(self):
        holder = Appointment.objects.get(pk=self.book('09:00').json()['data']['id'])
        rival = Appointment(
            appointment_number='DC01-X-0900', patient=make_patient(phone='9800000001'),
            clinic=self.clinic, date=self.monday, time_slot='09:00', reason='Checkup',
        )

        with transaction.atomic():
            with self.assertRaises(SlotUnavailable):
                SlotAllocator(self.clinic).commit(rival)
            # The savepoint keeps the surrounding transaction usable
            self.assertEqual(
                Appointment.objects.filter(clinic=self.clinic, date=self.monday, time_slot='09:00').count(), 1
            )

        holder.cancel(reason='Patient unwell')
        rival.pk = None
        SlotAllocator(self.clinic).commit(rival)
        self.assertEqual(
            Appointment.objects.filter(date=self.monday, time_slot='09:00').exclude(status='cancelled').get().pk,
            rival.pk,
        )

    def test_allocator_reads_current_clinic_row(self):
        allocator = SlotAllocator(self.clinic)
        type(self.clinic).objects.filter(pk=self.clinic.pk).update(max_daily_appointments=0)

        with transaction.atomic():
            with self.assertRaisesMessage(InvalidOperation, 'Maximum appointments reached for this date'):
                allocator.check_bookable(self.monday, '09:00')
        self.assertEqual(allocator.clinic.max_daily_appointments, 0)

    def test_available_slots_endpoint(self):
        self.book('09:00')
        response = self.client.get('/api/appointments/available-slots/', {
            'clinic': self.clinic.id, 'date': self.monday.isoformat(),
        }, **self.headers)

        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['booked_slots'], ['09:00'])
        self.assertEqual(len(data['available_slots']), 21)


class LifecycleTestCase(AppointmentAPITestBase):
    """Status machine and its history"""

    def history(self, appointment):
        return list(appointment.status_history.values_list('status', flat=True))

    def test_illegal_transition_leaves_no_trace(self):
        appointment_id = self.book('09:00').json()['data']['id']

        response = self.client.patch(
            f'/api/appointments/{appointment_id}/status/', {'status': 'completed'},
            format='json', **self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['kind'], 'invalid_transition')
        self.assertEqual(response.json()['error'], 'Cannot change status from scheduled to completed')

        appointment = Appointment.objects.get(pk=appointment_id)
        self.assertEqual(appointment.status, 'scheduled')
        self.assertEqual(appointment.status_history.count(), 1)

    def test_every_move_follows_the_transition_table(self):
        appointment = Appointment.objects.get(pk=self.book('09:00').json()['data']['id'])
        statuses = [value for value, _ in Appointment.STATUS_CHOICES]

        for current in statuses:
            for target in statuses:
                with self.subTest(current=current, target=target):
                    Appointment.objects.filter(pk=appointment.pk).update(status=current)
                    appointment.refresh_from_db()
                    before = appointment.status_history.count()

                    if target in ALLOWED_TRANSITIONS[current]:
                        appointment.transition_to(target, actor_id='desk-1')
                        appointment.refresh_from_db()
                        self.assertEqual(appointment.status, target)
                        self.assertEqual(appointment.status_history.count(), before + 1)
                    else:
                        with self.assertRaises(InvalidTransition):
                            appointment.transition_to(target, actor_id='desk-1')
                        appointment.refresh_from_db()
                        self.assertEqual(appointment.status, current)
                        self.assertEqual(appointment.status_history.count(), before)

    def test_confirm_then_no_show(self):
        appointment_id = self.book('09:00').json()['data']['id']
        url = f'/api/appointments/{appointment_id}/status/'

        self.assertEqual(self.client.patch(url, {'status': 'confirmed'}, format='json', **self.headers).status_code, 200)
        self.assertEqual(self.client.patch(url, {'status': 'no_show'}, format='json', **self.headers).status_code, 200)

        appointment = Appointment.objects.get(pk=appointment_id)
        self.assertEqual(self.history(appointment), ['scheduled', 'confirmed', 'no_show'])

        with self.assertRaises(InvalidTransition):
            appointment.transition_to('confirmed')

    def test_visit_flow(self):
        appointment = self.make_today()

        self.client.post(f'/api/appointments/{appointment.id}/check-in/', **self.headers)
        self.client.post(f'/api/appointments/{appointment.id}/start/', **self.headers)
        response = self.client.post(f'/api/appointments/{appointment.id}/complete/', {
            'notes': 'Composite filling on 36',
            'prescriptions': 'Ibuprofen 400mg',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 200)
        appointment.refresh_from_db()
        self.assertEqual(appointment.status, 'completed')
        self.assertIsNotNone(appointment.check_in_time)
        self.assertIsNotNone(appointment.start_time)
        self.assertIsNotNone(appointment.end_time)
        self.assertIn('Clinical Notes: Composite filling on 36\nPrescriptions: Ibuprofen 400mg', appointment.notes)
        self.assertEqual(self.history(appointment), ['checked_in', 'in_progress', 'completed'])
        self.assertEqual(appointment.status_history.first().changed_by_id, 'desk-1')

    def test_start_requires_check_in(self):
        appointment = self.make_today()
        response = self.client.post(f'/api/appointments/{appointment.id}/start/', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Patient must be checked in before starting treatment')

    def test_check_in_only_today(self):
        appointment_id = self.book('09:00').json()['data']['id']
        response = self.client.post(f'/api/appointments/{appointment_id}/check-in/', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Can only check in appointments scheduled for today')

    def test_check_in_requires_bookable_status(self):
        appointment = self.make_today(status='in_progress')
        with self.assertRaises(InvalidOperation):
            appointment.check_in()

    def test_complete_requires_visit(self):
        appointment = self.make_today()
        with self.assertRaises(InvalidOperation):
            appointment.complete()

    def test_cancel_rules(self):
        appointment = self.make_today()
        appointment.cancel(actor_id='desk-2')
        appointment.refresh_from_db()

        self.assertEqual(appointment.status, 'cancelled')
        self.assertEqual(appointment.cancellation_reason, 'Cancelled by clinic')
        self.assertEqual(appointment.cancelled_by_id, 'desk-2')
        self.assertIsNotNone(appointment.cancelled_at)

        with self.assertRaisesMessage(InvalidOperation, 'Appointment already cancelled'):
            appointment.cancel()

        done = self.make_today('11:00', status='completed')
        with self.assertRaisesMessage(InvalidOperation, 'Cannot cancel a completed appointment'):
            done.cancel()

    def test_history_is_append_only(self):
        appointment = self.make_today()
        appointment.cancel()
        entry = appointment.status_history.get()

        entry.reason = 'rewritten'
        with self.assertRaises(InvalidOperation):
            entry.save()
        self.assertEqual(AppointmentStatusHistory.objects.get(pk=entry.pk).reason, 'Cancelled by clinic')

    def test_delete_not_allowed(self):
        appointment_id = self.book('09:00').json()['data']['id']
        response = self.client.delete(f'/api/appointments/{appointment_id}/', **self.headers)
        self.assertEqual(response.status_code, 405)


class RescheduleTestCase(AppointmentAPITestBase):

    def reschedule(self, appointment_id, day, time_slot, reason='Patient request'):
        return self.client.post(f'/api/appointments/{appointment_id}/reschedule/', {
            'date': day.isoformat(), 'time_slot': time_slot, 'reason': reason,
        }, format='json', **self.headers)

    def test_reschedule_moves_and_frees_old_slot(self):
        appointment_id = self.book('09:00').json()['data']['id']
        Appointment.objects.get(pk=appointment_id).transition_to('confirmed')
        tuesday = next_weekday(2)

        response = self.reschedule(appointment_id, tuesday, '10:00')

        self.assertEqual(response.status_code, 200)
        appointment = Appointment.objects.get(pk=appointment_id)
        self.assertEqual(appointment.date, tuesday)
        self.assertEqual(appointment.time_slot, '10:00')
        self.assertEqual(appointment.status, 'scheduled')
        self.assertEqual(appointment.token_number, 1)
        self.assertIn('Rescheduled: Patient request', appointment.notes)
        self.assertEqual(appointment.status_history.count(), 3)

        self.assertEqual(self.book('09:00', patient=make_patient(phone='9800000001')).status_code, 201)

    def test_reschedule_into_taken_slot(self):
        self.book('10:00', patient=make_patient(phone='9800000001'))
        appointment_id = self.book('09:00').json()['data']['id']

        response = self.reschedule(appointment_id, self.monday, '10:00')

        self.assertEqual(response.status_code, 409)
        appointment = Appointment.objects.get(pk=appointment_id)
        self.assertEqual(appointment.time_slot, '09:00')
        self.assertEqual(appointment.status_history.count(), 1)

    def test_reschedule_within_same_day_keeps_own_slot_free(self):
        appointment_id = self.book('09:00').json()['data']['id']
        response = self.reschedule(appointment_id, self.monday, '09:00')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Appointment.objects.get(pk=appointment_id).token_number, 1)

    def test_reschedule_cancelled_rejected(self):
        appointment_id = self.book('09:00').json()['data']['id']
        Appointment.objects.get(pk=appointment_id).cancel()

        response = self.reschedule(appointment_id, next_weekday(2), '10:00')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Cannot reschedule a cancelled appointment')

    def test_reschedule_to_past_rejected(self):
        appointment_id = self.book('09:00').json()['data']['id']
        response = self.reschedule(appointment_id, clinic_today() - timedelta(days=2), '10:00')
        self.assertEqual(response.status_code, 400)

    def test_update_type_recomputes_unpaid_fee(self):
        appointment_id = self.book('09:00').json()['data']['id']
        response = self.client.patch(
            f'/api/appointments/{appointment_id}/', {'type': 'emergency'},
            format='json', **self.headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Appointment.objects.get(pk=appointment_id).opd_fee, Decimal('500.00'))


class AppointmentQueryTestCase(AppointmentAPITestBase):

    def test_by_phone(self):
        self.book('09:00')
        response = self.client.get(f'/api/appointments/by-phone/{self.patient.phone}/', **self.headers)

        self.assertEqual(response.status_code, 200)
        missing = self.client.get('/api/appointments/by-phone/9000000000/', **self.headers)
        self.assertEqual(missing.status_code, 404)

    def test_today_lists_by_token(self):
        second = self.make_today('11:00')
        second.token_number = 2
        second.save()
        first = self.make_today('10:00')

        response = self.client.get('/api/appointments/today/', {'clinic': self.clinic.id}, **self.headers)
        self.assertEqual(response.status_code, 200)
        ids = [row['id'] for row in response.json()['data']]
        self.assertEqual(ids, [first.id, second.id])

    def test_upcoming_skips_cancelled(self):
        keep = self.book('09:00').json()['data']['id']
        drop = self.book('09:30', patient=make_patient(phone='9800000001')).json()['data']['id']
        Appointment.objects.get(pk=drop).cancel()

        response = self.client.get('/api/appointments/upcoming/', {'days': 14}, **self.headers)
        ids = [row['id'] for row in response.json()['data']]
        self.assertIn(keep, ids)
        self.assertNotIn(drop, ids)


@skipUnlessDBFeature('has_select_for_update')
class ConcurrentBookingTestCase(TransactionTestCase):
    """Simultaneous requests for one slot; exactly one wins"""

    def test_single_winner(self):
        clinic = make_clinic('DC01')
        patients = [make_patient(phone=f'96000000{i:02d}') for i in range(4)]
        day = next_weekday(1)
        barrier = threading.Barrier(len(patients), timeout=10)
        outcomes = []

        def book(patient):
            try:
                serializer = AppointmentCreateSerializer(data={
                    'patient_id': patient.id, 'clinic_id': clinic.id,
                    'date': day.isoformat(), 'time_slot': '09:00', 'reason': 'Checkup',
                })
                serializer.is_valid(raise_exception=True)
                barrier.wait()
                serializer.save()
                outcomes.append('booked')
            except SlotUnavailable:
                outcomes.append('conflict')
            finally:
                connection.close()

        threads = [threading.Thread(target=book, args=(p,)) for p in patients]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count('booked'), 1)
        self.assertEqual(outcomes.count('conflict'), len(patients) - 1)
        self.assertEqual(
            Appointment.objects.filter(clinic=clinic, date=day, time_slot='09:00').count(), 1
        )

    def test_daily_cap_holds_under_concurrency(self):
        clinic = make_clinic('DC02', max_daily_appointments=2)
        day = next_weekday(1)
        Appointment.objects.create(
            appointment_number='DC02-X-0001', patient=make_patient(phone='9500000099'),
            clinic=clinic, date=day, time_slot='09:00', reason='Checkup',
        )
        patients = [make_patient(phone=f'95000000{i:02d}') for i in range(4)]
        slots = ['10:00', '10:30', '11:00', '11:30']
        barrier = threading.Barrier(len(patients), timeout=10)
        outcomes = []

        def book(patient, time_slot):
            try:
                serializer = AppointmentCreateSerializer(data={
                    'patient_id': patient.id, 'clinic_id': clinic.id,
                    'date': day.isoformat(), 'time_slot': time_slot, 'reason': 'Checkup',
                })
                serializer.is_valid(raise_exception=True)
                barrier.wait()
                serializer.save()
                outcomes.append('booked')
            except InvalidOperation:
                outcomes.append('full')
            finally:
                connection.close()

        threads = [threading.Thread(target=book, args=args) for args in zip(patients, slots)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count('booked'), 1)
        self.assertEqual(outcomes.count('full'), len(patients) - 1)
        self.assertEqual(
            Appointment.objects.filter(clinic=clinic, date=day).exclude(status='cancelled').count(), 2
        )
