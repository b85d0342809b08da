# apps/patients/tests.py

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.patients.models import Patient, current_discount_percent, has_membership
from common.testing import auth_header, make_patient


class MembershipTestCase(TestCase):
    """Membership discount lookup used by billing"""

    def test_active_membership_gives_discount(self):
        patient = make_patient(
            membership_status='active',
            membership_discount_percent=Decimal('15.00'),
            membership_expiry_date=timezone.now() + timedelta(days=30),
        )
        self.assertTrue(patient.has_membership)
        self.assertEqual(patient.current_discount, Decimal('15.00'))
        self.assertTrue(has_membership(patient.id))
        self.assertEqual(current_discount_percent(patient.id), Decimal('15.00'))

    def test_expired_membership_gives_nothing(self):
        patient = make_patient(
            membership_status='active',
            membership_discount_percent=Decimal('15.00'),
            membership_expiry_date=timezone.now() - timedelta(days=1),
        )
        self.assertFalse(patient.has_membership)
        self.assertEqual(patient.current_discount, Decimal('0.00'))

    def test_cancelled_membership_gives_nothing(self):
        patient = make_patient(
            membership_status='cancelled',
            membership_discount_percent=Decimal('10.00'),
            membership_expiry_date=timezone.now() + timedelta(days=30),
        )
        self.assertEqual(patient.current_discount, Decimal('0.00'))

    def test_unknown_patient(self):
        self.assertFalse(has_membership(999999))
        self.assertEqual(current_discount_percent(999999), Decimal('0.00'))


class PatientAPITestCase(TestCase):
    """Patient endpoints"""

    def setUp(self):
        self.client = APIClient()
        self.headers = auth_header(user_id='desk-7')

    def test_register_patient(self):
        response = self.client.post('/api/patients/', {
            'name': 'Rohit Sharma',
            'phone': '9811111111',
            'gender': 'male',
            'allergies': ['penicillin'],
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 201)
        patient = Patient.objects.get(phone='9811111111')
        self.assertEqual(patient.registered_by_id, 'desk-7')
        self.assertEqual(patient.allergies, ['penicillin'])

    def test_duplicate_phone_conflicts(self):
        make_patient(phone='9811111111')
        response = self.client.post('/api/patients/', {
            'name': 'Someone Else', 'phone': '9811111111',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 409)

    def test_membership_endpoint(self):
        patient = make_patient(
            membership_status='active',
            membership_plan_code='GOLD',
            membership_discount_percent=Decimal('20.00'),
            membership_expiry_date=timezone.now() + timedelta(days=90),
        )
        response = self.client.get(f'/api/patients/{patient.id}/membership/', **self.headers)

        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertTrue(data['has_membership'])
        self.assertEqual(data['current_discount'], '20.00')
        self.assertEqual(data['plan_code'], 'GOLD')

    def test_search_by_phone(self):
        make_patient(phone='9811111111', name='Rohit Sharma')
        make_patient(phone='9822222222', name='Meera Nair')

        response = self.client.get('/api/patients/', {'search': '98222'}, **self.headers)
        self.assertEqual(response.status_code, 200)
        results = response.json()['results']
        self.assertEqual([row['name'] for row in results], ['Meera Nair'])

    def test_destroy_deactivates(self):
        patient = make_patient()
        response = self.client.delete(f'/api/patients/{patient.id}/', **self.headers)

        self.assertEqual(response.status_code, 200)
        patient.refresh_from_db()
        self.assertFalse(patient.is_active)
