# common/tests.py

import threading
from datetime import datetime, timedelta, timezone as dt_timezone

import jwt
from django.conf import settings
from django.db import connection, transaction
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature
from rest_framework.test import APIClient

from common.models import SequenceCounter
from common.numbering import (
    month_code,
    next_appointment_number,
    next_invoice_number,
    next_payment_number,
    next_token_number,
)
from common.testing import auth_header, make_clinic


class SequenceCounterTestCase(TestCase):
    """Counter rows behind the human-readable numbers"""

    def test_next_value_increments_per_scope(self):
        self.assertEqual(SequenceCounter.next_value('invoice:2410'), 1)
        self.assertEqual(SequenceCounter.next_value('invoice:2410'), 2)
        self.assertEqual(SequenceCounter.next_value('invoice:2411'), 1)

    def test_new_scope_starts_from_seed(self):
        self.assertEqual(SequenceCounter.next_value('payment:2410', seed=lambda: 41), 42)
        # seed is only consulted when the row is created
        self.assertEqual(SequenceCounter.next_value('payment:2410', seed=lambda: 0), 43)


class NumberingTestCase(TestCase):
    """Formats and per-scope serials"""

    def setUp(self):
        self.clinic = make_clinic('DC01')

    def test_month_code(self):
        self.assertEqual(month_code(datetime(2024, 10, 19, 12, 0)), '2410')

    def test_appointment_numbers_are_per_clinic(self):
        other = make_clinic('DC02')
        yymm = month_code()

        self.assertEqual(next_appointment_number(self.clinic), f'DC01-{yymm}-0001')
        self.assertEqual(next_appointment_number(self.clinic), f'DC01-{yymm}-0002')
        self.assertEqual(next_appointment_number(other), f'DC02-{yymm}-0001')

    def test_invoice_and_payment_numbers(self):
        yymm = month_code()
        self.assertEqual(next_invoice_number(), f'INV-{yymm}-0001')
        self.assertEqual(next_invoice_number(), f'INV-{yymm}-0002')
        self.assertEqual(next_payment_number(), f'PAY-{yymm}-0001')

    def test_numbers_never_repeat(self):
        numbers = {next_invoice_number() for _ in range(25)}
        self.assertEqual(len(numbers), 25)

    def test_serials_are_contiguous(self):
        yymm = month_code()
        numbers = [next_appointment_number(self.clinic) for _ in range(100)]
        self.assertEqual(numbers, [f'DC01-{yymm}-{serial:04d}' for serial in range(1, 101)])


@skipUnlessDBFeature('has_select_for_update')
class ConcurrentNumberingTestCase(TransactionTestCase):
    """Parallel creators draw distinct, gap-free serials"""

    def draw_in_parallel(self, draw, workers=10, per_worker=10):
        barrier = threading.Barrier(workers, timeout=10)
        drawn = []
        errors = []

        def run():
            try:
                barrier.wait()
                for _ in range(per_worker):
                    with transaction.atomic():
                        drawn.append(draw())
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=run) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        return drawn

    def test_concurrent_appointment_numbers(self):
        clinic = make_clinic('DC05')
        yymm = month_code()
        self.assertEqual(next_appointment_number(clinic), f'DC05-{yymm}-0001')

        drawn = self.draw_in_parallel(lambda: next_appointment_number(clinic))

        self.assertEqual(sorted(drawn), [f'DC05-{yymm}-{serial:04d}' for serial in range(2, 102)])

    def test_concurrent_invoice_numbers(self):
        yymm = month_code()
        self.assertEqual(next_invoice_number(), f'INV-{yymm}-0001')

        drawn = self.draw_in_parallel(next_invoice_number)

        self.assertEqual(sorted(drawn), [f'INV-{yymm}-{serial:04d}' for serial in range(2, 102)])

    def test_token_is_next_queue_position(self):
        from apps.appointments.models import Appointment
        from common.testing import make_patient, next_weekday

        day = next_weekday(1)
        self.assertEqual(next_token_number(self.clinic, day), 1)

        patient = make_patient()
        Appointment.objects.create(
            appointment_number='DC01-X-0001', patient=patient, clinic=self.clinic,
            date=day, time_slot='09:00', token_number=1, reason='Checkup',
        )
        self.assertEqual(next_token_number(self.clinic, day), 2)


class TokenOutsideTransactionTestCase(TransactionTestCase):

    def test_token_requires_atomic_block(self):
        clinic = make_clinic('DC09')
        with self.assertRaises(RuntimeError):
            next_token_number(clinic, datetime(2030, 1, 7).date())

        with transaction.atomic():
            self.assertEqual(next_token_number(clinic, datetime(2030, 1, 7).date()), 1)


class JWTMiddlewareTestCase(TestCase):
    """Staff token checks on /api/ paths"""

    def setUp(self):
        self.client = APIClient()
        self.url = '/api/clinics/'

    def test_missing_header_is_rejected(self):
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Authorization header required')

    def test_wrong_scheme_is_rejected(self):
        response = self.client.get(self.url, HTTP_AUTHORIZATION='Token abc')
        self.assertEqual(response.status_code, 401)

    def test_expired_token_is_rejected(self):
        token = jwt.encode(
            {
                'user_id': 'u1', 'email': 'u1@x.test', 'is_super_admin': True,
                'permissions': {}, 'enabled_modules': ['dental'],
                'exp': datetime.now(dt_timezone.utc) - timedelta(hours=1),
            },
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        response = self.client.get(self.url, HTTP_AUTHORIZATION=f'Bearer {token}')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Token has expired')

    def test_missing_payload_field_is_rejected(self):
        token = jwt.encode({'user_id': 'u1'}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        response = self.client.get(self.url, HTTP_AUTHORIZATION=f'Bearer {token}')
        self.assertEqual(response.status_code, 401)

    def test_module_not_enabled(self):
        response = self.client.get(self.url, **auth_header(enabled_modules=['pharmacy']))
        self.assertEqual(response.status_code, 403)

    def test_valid_token_passes(self):
        response = self.client.get(self.url, **auth_header())
        self.assertEqual(response.status_code, 200)

    def test_module_permissions_are_enforced(self):
        headers = auth_header(
            is_super_admin=False,
            permissions={'dental': {'clinics': {'view': True, 'create': False}}},
        )
        self.assertEqual(self.client.get(self.url, **headers).status_code, 200)

        response = self.client.post(self.url, {'name': 'X', 'code': 'X1', 'phone': '1'}, format='json', **headers)
        self.assertEqual(response.status_code, 403)


class ExceptionHandlerTestCase(TestCase):
    """Error envelope rendered by api_exception_handler"""

    def setUp(self):
        self.client = APIClient()
        self.headers = auth_header()

    def test_not_found_envelope(self):
        response = self.client.get('/api/appointments/999999/', **self.headers)
        self.assertEqual(response.status_code, 404)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['kind'], 'not_found')

    def test_validation_error_envelope(self):
        response = self.client.post('/api/clinics/', {}, format='json', **self.headers)
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertFalse(body['success'])
        self.assertEqual(body['kind'], 'invalid_input')
        self.assertIn('errors', body)
