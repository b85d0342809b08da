# apps/payments/tests.py

import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

import razorpay
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from apps.appointments.models import Appointment
from apps.billing.models import Invoice
from apps.payments import reconciler
from apps.payments.models import Payment
from apps.payments.razorpay_utils import RazorpayClient, to_paise
from common.exceptions import ExceedsBalance, InvalidOperation
from common.numbering import next_invoice_number, next_payment_number
from common.testing import auth_header, make_clinic, make_patient, next_weekday

RAZORPAY_SETTINGS = {
    'RAZORPAY_KEY_ID': 'rzp_test_key',
    'RAZORPAY_KEY_SECRET': 'rzp_test_secret',
    'RAZORPAY_WEBHOOK_SECRET': 'whsec_test',
}


def checkout_signature(order_id, payment_id, secret=RAZORPAY_SETTINGS['RAZORPAY_KEY_SECRET']):
    message = f'{order_id}|{payment_id}'.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def webhook_signature(body, secret=RAZORPAY_SETTINGS['RAZORPAY_WEBHOOK_SECRET']):
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


class PaymentTestBase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.headers = auth_header(user_id='cashier-1')
        self.clinic = make_clinic('DC01')
        self.patient = make_patient()
        self.invoice = self.make_invoice(Decimal('4900'))

    def make_invoice(self, price, patient=None):
        invoice = Invoice.objects.create(
            invoice_number=next_invoice_number(),
            patient=patient or self.patient,
            clinic=self.clinic,
        )
        invoice.add_item({'description': 'Implant consult', 'unit_price': price})
        return invoice.issue()

    def pending_gateway_payment(self, order_id='order_TEST1', amount=Decimal('4900'), invoice=None):
        return Payment.objects.create(
            payment_number=next_payment_number(),
            patient=self.patient,
            clinic=self.clinic,
            invoice=invoice or self.invoice,
            amount=amount,
            payment_mode='razorpay',
            payment_type='invoice_payment',
            razorpay_order_id=order_id,
        )


class OfflinePaymentTestCase(PaymentTestBase):
    """Desk payments applied to invoices"""

    def test_partial_payment_against_invoice(self):
        response = self.client.post('/api/payments/', {
            'invoice_id': self.invoice.id, 'amount': '2000.00', 'payment_mode': 'cash',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], 'paid')
        self.assertEqual(data['payment_type'], 'invoice_payment')
        self.assertEqual(data['patient'], self.patient.id)
        self.assertEqual(data['received_by_id'], 'cashier-1')
        self.assertTrue(data['applied_to_invoice'])

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal('2000.00'))
        self.assertEqual(self.invoice.balance_due, Decimal('2900.00'))
        self.assertEqual(self.invoice.status, 'partially_paid')

    def test_advance_without_invoice(self):
        payment = reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, amount=Decimal('1000'), payment_mode='upi',
        )
        self.assertEqual(payment.payment_type, 'advance')
        self.assertEqual(payment.status, 'paid')
        self.assertIsNotNone(payment.paid_at)

    def test_gateway_mode_rejected_offline(self):
        response = self.client.post('/api/payments/', {
            'invoice_id': self.invoice.id, 'amount': '100.00', 'payment_mode': 'razorpay',
        }, format='json', **self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Payment.objects.exists())

    def test_invoice_of_other_patient_rejected(self):
        stranger = make_patient(phone='9800000001')
        response = self.client.post('/api/payments/', {
            'patient_id': stranger.id, 'invoice_id': self.invoice.id,
            'amount': '100.00', 'payment_mode': 'cash',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invoice does not belong to this patient')

    def test_overpayment_rejected(self):
        response = self.client.post('/api/payments/', {
            'invoice_id': self.invoice.id, 'amount': '5000.00', 'payment_mode': 'card',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['kind'], 'exceeds_balance')
        self.assertFalse(Payment.objects.exists())

    def test_membership_payment(self):
        response = self.client.post('/api/payments/membership/', {
            'patient_id': self.patient.id, 'clinic_id': self.clinic.id,
            'amount': '2999.00', 'payment_mode': 'card',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['data']['payment_type'], 'membership')

    def test_opd_fee(self):
        appointment = Appointment.objects.create(
            appointment_number='DC01-T-0001', patient=self.patient, clinic=self.clinic,
            date=next_weekday(1), time_slot='09:00', reason='Checkup',
        )
        url = '/api/payments/opd-fee/'

        response = self.client.post(url, {'appointment_id': appointment.id}, format='json', **self.headers)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Decimal(response.json()['data']['amount']), Decimal('300.00'))
        appointment.refresh_from_db()
        self.assertTrue(appointment.opd_fee_paid)

        again = self.client.post(url, {'appointment_id': appointment.id}, format='json', **self.headers)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()['error'], 'OPD fee already paid for this appointment')

    def test_patient_summary(self):
        reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('1000'), payment_mode='cash',
        )
        second = reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('500'), payment_mode='cash',
        )
        reconciler.refund_payment(second)

        response = self.client.get(f'/api/payments/patient/{self.patient.id}/summary/', **self.headers)
        self.assertEqual(response.status_code, 200)
        data = response.json()['data']
        self.assertEqual(data['total_paid'], '1000.00')
        self.assertEqual(data['total_refunded'], '500.00')
        self.assertEqual(data['payment_count'], 2)


class MarkPaidTestCase(PaymentTestBase):
    """Single application of a payment to its invoice"""

    def test_mark_paid_is_idempotent(self):
        payment = self.pending_gateway_payment()

        _, first = reconciler.mark_paid(payment)
        _, second = reconciler.mark_paid(payment)

        self.assertTrue(first)
        self.assertFalse(second)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal('4900.00'))
        self.assertEqual(self.invoice.status, 'paid')

    def test_failed_payment_cannot_be_paid(self):
        payment = self.pending_gateway_payment()
        reconciler.mark_failed(payment, 'BAD_REQUEST_ERROR', 'Card declined')

        with self.assertRaises(InvalidOperation):
            reconciler.mark_paid(payment)
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('0.00'))


@override_settings(**RAZORPAY_SETTINGS)
class RazorpayFlowTestCase(PaymentTestBase):
    """Order, checkout verification and webhooks"""

    @patch.object(RazorpayClient, 'create_order')
    def test_create_order_defaults_to_balance(self, mock_create_order):
        mock_create_order.return_value = {'id': 'order_TEST1', 'amount': 490000, 'currency': 'INR'}

        response = self.client.post('/api/payments/razorpay/create/', {
            'invoice_id': self.invoice.id,
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['razorpay_order_id'], 'order_TEST1')
        self.assertEqual(data['razorpay_key_id'], 'rzp_test_key')
        self.assertEqual(data['amount'], '4900.00')

        payment = Payment.objects.get(razorpay_order_id='order_TEST1')
        self.assertEqual(payment.status, 'pending')
        self.assertEqual(payment.payment_mode, 'razorpay')
        self.assertTrue(payment.gateway_receipt.startswith('rcpt_'))
        self.assertEqual(mock_create_order.call_args.kwargs['amount'], Decimal('4900.00'))

    @patch.object(RazorpayClient, 'create_order')
    def test_gateway_error_on_order(self, mock_create_order):
        mock_create_order.side_effect = razorpay.errors.BadRequestError('amount invalid')

        response = self.client.post('/api/payments/razorpay/create/', {
            'invoice_id': self.invoice.id, 'amount': '100.00',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()['kind'], 'payment_error')
        self.assertFalse(Payment.objects.exists())

    @override_settings(RAZORPAY_KEY_ID='', RAZORPAY_KEY_SECRET='')
    def test_gateway_not_configured(self):
        response = self.client.post('/api/payments/razorpay/create/', {
            'invoice_id': self.invoice.id,
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()['error'], 'Razorpay is not configured')

    def test_verify_valid_signature(self):
        payment = self.pending_gateway_payment()

        response = self.client.post('/api/payments/razorpay/verify/', {
            'razorpay_order_id': 'order_TEST1',
            'razorpay_payment_id': 'pay_TEST1',
            'razorpay_signature': checkout_signature('order_TEST1', 'pay_TEST1'),
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 200)
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'paid')
        self.assertEqual(payment.razorpay_payment_id, 'pay_TEST1')
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.payment_status, 'paid')

    def test_verify_signature_mismatch_fails_payment(self):
        payment = self.pending_gateway_payment()

        response = self.client.post('/api/payments/razorpay/verify/', {
            'razorpay_order_id': 'order_TEST1',
            'razorpay_payment_id': 'pay_TEST1',
            'razorpay_signature': checkout_signature('order_TEST1', 'pay_OTHER'),
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['kind'], 'signature_invalid')
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'failed')
        self.assertEqual(payment.error_code, 'SIGNATURE_INVALID')
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('0.00'))

    def test_verify_unknown_order(self):
        response = self.client.post('/api/payments/razorpay/verify/', {
            'razorpay_order_id': 'order_NOPE',
            'razorpay_payment_id': 'pay_TEST1',
            'razorpay_signature': 'x',
        }, format='json', **self.headers)
        self.assertEqual(response.status_code, 404)

    def post_webhook(self, event, signature=None):
        body = json.dumps(event).encode('utf-8')
        return self.client.post(
            '/api/payments/webhooks/razorpay/',
            data=body,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=signature if signature is not None else webhook_signature(body),
        )

    def captured_event(self, order_id='order_TEST1', payment_id='pay_TEST1'):
        return {
            'event': 'payment.captured',
            'payload': {'payment': {'entity': {
                'id': payment_id, 'order_id': order_id, 'method': 'upi',
                'vpa': 'asha@okbank', 'fee': 1180, 'tax': 180,
            }}},
        }

    def test_webhook_capture_applies_once(self):
        payment = self.pending_gateway_payment()

        self.assertEqual(self.post_webhook(self.captured_event()).status_code, 200)
        self.assertEqual(self.post_webhook(self.captured_event()).status_code, 200)

        payment.refresh_from_db()
        self.assertEqual(payment.status, 'paid')
        self.assertEqual(payment.gateway_method, 'upi')
        self.assertEqual(payment.gateway_vpa, 'asha@okbank')
        self.assertEqual(payment.gateway_fee, Decimal('11.80'))
        self.assertEqual(payment.gateway_tax, Decimal('1.80'))
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('4900.00'))

    def test_webhook_after_verify_is_unchanged(self):
        self.pending_gateway_payment()
        reconciler.verify_gateway_payment(
            razorpay_order_id='order_TEST1',
            razorpay_payment_id='pay_TEST1',
            razorpay_signature=checkout_signature('order_TEST1', 'pay_TEST1'),
        )

        self.assertEqual(reconciler.handle_webhook_event(self.captured_event()), 'unchanged')
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('4900.00'))

    def test_webhook_failed_event(self):
        payment = self.pending_gateway_payment()
        event = {
            'event': 'payment.failed',
            'payload': {'payment': {'entity': {
                'id': 'pay_TEST1', 'order_id': 'order_TEST1',
                'error_code': 'BAD_REQUEST_ERROR', 'error_description': 'Card declined',
            }}},
        }
        self.assertEqual(self.post_webhook(event).status_code, 200)

        payment.refresh_from_db()
        self.assertEqual(payment.status, 'failed')
        self.assertEqual(payment.error_description, 'Card declined')

    def test_webhook_unknown_order_ignored(self):
        self.assertEqual(reconciler.handle_webhook_event(self.captured_event('order_NOPE')), 'ignored')

    def test_webhook_signature_checks(self):
        self.pending_gateway_payment()

        missing = self.client.post(
            '/api/payments/webhooks/razorpay/', data=b'{}', content_type='application/json'
        )
        self.assertEqual(missing.status_code, 400)

        forged = self.post_webhook(self.captured_event(), signature='deadbeef')
        self.assertEqual(forged.status_code, 400)
        self.assertEqual(Payment.objects.get(razorpay_order_id='order_TEST1').status, 'pending')

    def test_capture_for_settled_invoice_is_acknowledged(self):
        first = self.pending_gateway_payment('order_A')
        second = self.pending_gateway_payment('order_B')

        self.assertEqual(self.post_webhook(self.captured_event('order_A', 'pay_A')).status_code, 200)
        response = self.post_webhook(self.captured_event('order_B', 'pay_B'))

        self.assertEqual(response.status_code, 200)
        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, 'paid')
        self.assertEqual(second.status, 'failed')
        self.assertEqual(second.error_code, reconciler.NOT_APPLIED_CODE)
        self.assertEqual(second.error_description, 'Invoice is already fully paid. Refund required.')
        self.assertEqual(second.razorpay_payment_id, 'pay_B')
        self.assertFalse(second.applied_to_invoice)
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('4900.00'))

        # Redelivery changes nothing
        self.assertEqual(reconciler.handle_webhook_event(self.captured_event('order_B', 'pay_B')), 'unchanged')

    def test_verify_for_settled_invoice(self):
        payment = self.pending_gateway_payment()
        reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('4900'), payment_mode='cash',
        )

        response = self.client.post('/api/payments/razorpay/verify/', {
            'razorpay_order_id': 'order_TEST1',
            'razorpay_payment_id': 'pay_TEST1',
            'razorpay_signature': checkout_signature('order_TEST1', 'pay_TEST1'),
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['kind'], 'invalid_operation')
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'failed')
        self.assertEqual(payment.error_code, reconciler.NOT_APPLIED_CODE)
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('4900.00'))

    def test_pending_online_payment_blocks_cancel(self):
        payment = self.pending_gateway_payment()

        with self.assertRaisesMessage(InvalidOperation, 'Invoice has online payments in progress'):
            self.invoice.cancel()
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).status, 'sent')

        reconciler.mark_failed(payment, error_code='BAD_REQUEST_ERROR')
        self.invoice.cancel()
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).status, 'cancelled')

        # A late capture for the failed payment is acknowledged untouched
        self.assertEqual(self.post_webhook(self.captured_event()).status_code, 200)
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'failed')


@override_settings(**RAZORPAY_SETTINGS)
class RefundTestCase(PaymentTestBase):

    def test_partial_refund_reopens_invoice(self):
        payment = reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('4900'), payment_mode='cash',
        )

        response = self.client.post(f'/api/payments/{payment.id}/refund/', {
            'amount': '2000.00', 'reason': 'Procedure deferred',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 200)
        payment.refresh_from_db()
        self.assertEqual(payment.status, 'refunded')
        self.assertEqual(payment.refund_amount, Decimal('2000.00'))
        self.assertEqual(payment.refunded_by_id, 'cashier-1')

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal('2900.00'))
        self.assertEqual(self.invoice.balance_due, Decimal('2000.00'))
        self.assertEqual(self.invoice.payment_status, 'partial')

    def test_refund_guards(self):
        payment = reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('1000'), payment_mode='cash',
        )
        with self.assertRaises(ExceedsBalance):
            reconciler.refund_payment(payment, amount=Decimal('1000.01'))

        reconciler.refund_payment(payment)
        with self.assertRaisesMessage(InvalidOperation, 'Only paid payments can be refunded'):
            reconciler.refund_payment(payment)

    @patch.object(RazorpayClient, 'refund')
    def test_gateway_refund(self, mock_refund):
        mock_refund.return_value = {'id': 'rfnd_TEST1', 'amount': 490000}
        payment = self.pending_gateway_payment()
        reconciler.verify_gateway_payment(
            razorpay_order_id='order_TEST1',
            razorpay_payment_id='pay_TEST1',
            razorpay_signature=checkout_signature('order_TEST1', 'pay_TEST1'),
        )

        payment = reconciler.refund_payment(payment, reason='Duplicate charge')

        mock_refund.assert_called_once_with('pay_TEST1', Decimal('4900.00'))
        self.assertEqual(payment.razorpay_refund_id, 'rfnd_TEST1')
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('0.00'))

    @patch.object(RazorpayClient, 'refund')
    def test_refund_capture_not_applied(self, mock_refund):
        mock_refund.return_value = {'id': 'rfnd_LATE', 'amount': 490000}
        reconciler.record_offline_payment(
            patient=self.patient, clinic=self.clinic, invoice=self.invoice,
            amount=Decimal('4900'), payment_mode='cash',
        )
        late = self.pending_gateway_payment('order_LATE')
        reconciler.handle_webhook_event({
            'event': 'payment.captured',
            'payload': {'payment': {'entity': {'id': 'pay_LATE', 'order_id': 'order_LATE'}}},
        })

        late = reconciler.refund_payment(late, reason='Invoice already settled')

        mock_refund.assert_called_once_with('pay_LATE', Decimal('4900.00'))
        self.assertEqual(late.status, 'refunded')
        self.assertEqual(late.razorpay_refund_id, 'rfnd_LATE')
        self.assertEqual(Invoice.objects.get(pk=self.invoice.pk).amount_paid, Decimal('4900.00'))

    def test_opd_refund_clears_flag(self):
        appointment = Appointment.objects.create(
            appointment_number='DC01-T-0002', patient=self.patient, clinic=self.clinic,
            date=next_weekday(1), time_slot='09:30', reason='Checkup',
        )
        payment = reconciler.record_opd_fee_payment(appointment=appointment)
        reconciler.refund_payment(payment)

        appointment.refresh_from_db()
        self.assertFalse(appointment.opd_fee_paid)

    def test_to_paise(self):
        self.assertEqual(to_paise(Decimal('4900.50')), 490050)
