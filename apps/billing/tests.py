# apps/billing/tests.py

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.billing.models import Invoice, ItemReference, derive_status, round_rupee
from apps.billing.tasks import flag_overdue_invoices, mark_overdue_invoices
from common.exceptions import ExceedsBalance, InvalidOperation, NotFound
from common.numbering import next_invoice_number
from common.testing import auth_header, make_clinic, make_patient


class InvoiceTestBase(TestCase):

    def setUp(self):
        self.clinic = make_clinic('DC01')
        self.patient = make_patient()

    def make_invoice(self, items, issue=True, patient=None, **fields):
        invoice = Invoice.objects.create(
            invoice_number=next_invoice_number(),
            patient=patient or self.patient,
            clinic=self.clinic,
            **fields
        )
        for item in items:
            invoice.add_item(item, recalculate=False)
        invoice.recalculate()
        if issue:
            invoice.issue()
        return invoice


class InvoiceCalculationTestCase(InvoiceTestBase):
    """Item and invoice totals"""

    def test_item_percentage_discount(self):
        invoice = self.make_invoice([
            {'description': 'Root canal', 'unit_price': Decimal('5000'), 'discount_percentage': Decimal('10')},
        ])
        item = invoice.items.get()

        self.assertEqual(item.amount, Decimal('4500.00'))
        self.assertEqual(invoice.subtotal, Decimal('4500.00'))
        self.assertEqual(invoice.total_discount, Decimal('500.00'))
        self.assertEqual(invoice.grand_total, Decimal('4500.00'))
        self.assertEqual(invoice.balance_due, Decimal('4500.00'))
        self.assertEqual(invoice.payment_status, 'unpaid')
        self.assertEqual(invoice.status, 'sent')

    def test_tax_and_invoice_level_discount(self):
        invoice = self.make_invoice([
            {'description': 'Crown', 'unit_price': Decimal('1000'), 'tax_rate': Decimal('18')},
            {'description': 'X-ray', 'unit_price': Decimal('250'), 'quantity': 2},
        ], discount_percentage=Decimal('10'))

        self.assertEqual(invoice.subtotal, Decimal('1500.00'))
        self.assertEqual(invoice.total_tax, Decimal('180.00'))
        self.assertEqual(invoice.total_discount, Decimal('150.00'))
        self.assertEqual(invoice.grand_total, Decimal('1530.00'))

    def test_flat_discount_never_goes_negative(self):
        invoice = self.make_invoice([
            {'description': 'Consultation', 'unit_price': Decimal('100'), 'discount_amount': Decimal('250')},
        ])
        self.assertEqual(invoice.items.get().amount, Decimal('0.00'))
        self.assertEqual(invoice.grand_total, Decimal('0.00'))

    def test_grand_total_rounds_half_up_to_rupee(self):
        self.assertEqual(round_rupee(Decimal('99.50')), Decimal('100.00'))
        self.assertEqual(round_rupee(Decimal('99.49')), Decimal('99.00'))

        invoice = self.make_invoice([{'description': 'Floss kit', 'unit_price': Decimal('199.50')}])
        self.assertEqual(invoice.grand_total, Decimal('200.00'))

    def test_recalculate_is_stable(self):
        invoice = self.make_invoice([
            {'description': 'Scaling', 'unit_price': Decimal('1234.56'), 'tax_rate': Decimal('5')},
        ], discount_amount=Decimal('34.56'))
        first = (invoice.subtotal, invoice.total_tax, invoice.total_discount, invoice.grand_total)

        invoice.recalculate()
        invoice.recalculate()
        invoice.refresh_from_db()
        self.assertEqual(
            (invoice.subtotal, invoice.total_tax, invoice.total_discount, invoice.grand_total), first
        )

    def test_membership_discount_defaults_items(self):
        member = make_patient(
            phone='9800000009',
            membership_status='active',
            membership_discount_percent=Decimal('15.00'),
            membership_expiry_date=timezone.now() + timedelta(days=30),
        )
        invoice = self.make_invoice([
            {'description': 'Cleaning', 'unit_price': Decimal('1000')},
            {'description': 'Whitening', 'unit_price': Decimal('1000'), 'discount_percentage': Decimal('5')},
        ], patient=member)

        amounts = list(invoice.items.values_list('amount', flat=True))
        self.assertEqual(amounts, [Decimal('850.00'), Decimal('950.00')])
        self.assertEqual(invoice.grand_total, Decimal('1800.00'))

    def test_item_reference(self):
        invoice = self.make_invoice([
            {'description': 'Extraction', 'unit_price': Decimal('800'),
             'item_type': 'treatment', 'reference': ItemReference('treatment', 7)},
        ])
        item = invoice.items.get()
        self.assertEqual(item.reference, ItemReference('treatment', 7))
        self.assertEqual((item.reference_kind, item.reference_id), ('treatment', 7))

    def test_derive_status(self):
        self.assertEqual(derive_status('draft', 'paid'), 'draft')
        self.assertEqual(derive_status('sent', 'partial'), 'partially_paid')
        self.assertEqual(derive_status('overdue', 'partial'), 'overdue')
        self.assertEqual(derive_status('overdue', 'paid'), 'paid')
        self.assertEqual(derive_status('paid', 'partial'), 'partially_paid')


class InvoiceLifecycleTestCase(InvoiceTestBase):
    """Issue, pay, refund and cancel"""

    def test_issue_requires_items(self):
        invoice = self.make_invoice([], issue=False)
        with self.assertRaisesMessage(InvalidOperation, 'Cannot issue invoice with no items'):
            invoice.issue()
        self.assertEqual(Invoice.objects.get(pk=invoice.pk).status, 'draft')

    def test_zero_total_issues_as_paid(self):
        invoice = self.make_invoice(
            [{'description': 'Check-up', 'unit_price': Decimal('800')}],
            issue=False,
            discount_percentage=Decimal('100'),
        )
        self.assertEqual(invoice.grand_total, Decimal('0.00'))

        invoice.issue()
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, 'paid')
        self.assertEqual(invoice.status, 'paid')

    def test_issue_only_once(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        with self.assertRaisesMessage(InvalidOperation, 'Only draft invoices can be issued'):
            invoice.issue()

    def test_issued_invoice_is_frozen(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        with self.assertRaisesMessage(InvalidOperation, 'Only draft invoices can be modified'):
            invoice.add_item({'description': 'Extra', 'unit_price': Decimal('100')})

    def test_remove_missing_item(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}], issue=False)
        with self.assertRaises(NotFound):
            invoice.remove_item(999999)

    def test_partial_then_full_payment(self):
        invoice = self.make_invoice([
            {'description': 'Root canal', 'unit_price': Decimal('5000'), 'discount_percentage': Decimal('10')},
        ])

        invoice.apply_payment(Decimal('2000'))
        self.assertEqual(invoice.payment_status, 'partial')
        self.assertEqual(invoice.status, 'partially_paid')
        self.assertEqual(invoice.balance_due, Decimal('2500.00'))

        invoice.apply_payment(Decimal('2500'))
        invoice.refresh_from_db()
        self.assertEqual(invoice.payment_status, 'paid')
        self.assertEqual(invoice.status, 'paid')
        self.assertEqual(invoice.balance_due, Decimal('0.00'))

    def test_reverse_payment_reopens_balance(self):
        invoice = self.make_invoice([{'description': 'Implant consult', 'unit_price': Decimal('4900')}])
        invoice.apply_payment(Decimal('4900'))

        invoice.reverse_payment(Decimal('2000'))
        invoice.refresh_from_db()
        self.assertEqual(invoice.amount_paid, Decimal('2900.00'))
        self.assertEqual(invoice.balance_due, Decimal('2000.00'))
        self.assertEqual(invoice.payment_status, 'partial')
        self.assertEqual(invoice.status, 'partially_paid')

    def test_payment_guards(self):
        draft = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}], issue=False)
        with self.assertRaisesMessage(InvalidOperation, 'Invoice must be issued before recording payments'):
            draft.check_payable(Decimal('100'))

        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        with self.assertRaisesMessage(ExceedsBalance, 'Payment amount (600) exceeds balance due (500.00)'):
            invoice.apply_payment(Decimal('600'))
        self.assertEqual(Invoice.objects.get(pk=invoice.pk).amount_paid, Decimal('0.00'))

        invoice.apply_payment(Decimal('500'))
        with self.assertRaisesMessage(InvalidOperation, 'Invoice is already fully paid'):
            invoice.check_payable(Decimal('1'))

    def test_cancel_unpaid(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        invoice.cancel(actor_id='admin-1')

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, 'cancelled')
        self.assertEqual(invoice.cancellation_reason, 'Cancelled by admin')
        self.assertEqual(invoice.cancelled_by_id, 'admin-1')

        with self.assertRaisesMessage(InvalidOperation, 'Invoice is already cancelled'):
            invoice.cancel()
        with self.assertRaisesMessage(InvalidOperation, 'Cannot record payment for cancelled invoice'):
            invoice.check_payable(Decimal('100'))

    def test_cancel_with_payments_requires_refund(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        invoice.apply_payment(Decimal('200'))
        with self.assertRaisesMessage(InvalidOperation, 'Invoice has payments recorded. Please process refunds first.'):
            invoice.cancel()

        invoice.apply_payment(Decimal('300'))
        with self.assertRaisesMessage(InvalidOperation, 'Cannot cancel a fully paid invoice'):
            invoice.cancel()


class OverdueSweepTestCase(InvoiceTestBase):

    def test_sweep_flags_only_open_invoices(self):
        past = timezone.localdate() - timedelta(days=3)
        item = [{'description': 'Cleaning', 'unit_price': Decimal('500')}]

        sent = self.make_invoice(item, due_date=past)
        partial = self.make_invoice(item, due_date=past)
        partial.apply_payment(Decimal('100'))
        paid = self.make_invoice(item, due_date=past)
        paid.apply_payment(Decimal('500'))
        draft = self.make_invoice(item, issue=False, due_date=past)
        current = self.make_invoice(item)

        self.assertEqual(flag_overdue_invoices(), 2)
        statuses = {
            invoice.pk: Invoice.objects.get(pk=invoice.pk).status
            for invoice in (sent, partial, paid, draft, current)
        }
        self.assertEqual(statuses[sent.pk], 'overdue')
        self.assertEqual(statuses[partial.pk], 'overdue')
        self.assertEqual(statuses[paid.pk], 'paid')
        self.assertEqual(statuses[draft.pk], 'draft')
        self.assertEqual(statuses[current.pk], 'sent')

        self.assertEqual(flag_overdue_invoices(), 0)

    def test_overdue_stays_until_paid(self):
        invoice = self.make_invoice(
            [{'description': 'Cleaning', 'unit_price': Decimal('500')}],
            due_date=timezone.localdate() - timedelta(days=1),
        )
        flag_overdue_invoices()
        invoice.refresh_from_db()

        invoice.apply_payment(Decimal('100'))
        self.assertEqual(invoice.status, 'overdue')
        invoice.apply_payment(Decimal('400'))
        self.assertEqual(invoice.status, 'paid')

    def test_celery_task(self):
        self.make_invoice(
            [{'description': 'Cleaning', 'unit_price': Decimal('500')}],
            due_date=timezone.localdate() + timedelta(days=5),
        )
        as_of = (timezone.localdate() + timedelta(days=10)).isoformat()

        result = mark_overdue_invoices.apply(kwargs={'today': as_of}).get()
        self.assertEqual(result, {'success': True, 'updated': 1})


class InvoiceAPITestCase(InvoiceTestBase):
    """Billing endpoints"""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        self.headers = auth_header(user_id='billing-1')

    def create_invoice(self, **extra):
        payload = {
            'patient_id': self.patient.id,
            'clinic_id': self.clinic.id,
            'items': [
                {'description': 'Root canal', 'unit_price': '5000.00', 'discount_percentage': '10'},
            ],
        }
        payload.update(extra)
        return self.client.post('/api/billing/invoices/', payload, format='json', **self.headers)

    def test_create_invoice(self):
        response = self.create_invoice()

        self.assertEqual(response.status_code, 201)
        data = response.json()['data']
        self.assertEqual(data['status'], 'draft')
        self.assertEqual(data['grand_total'], '4500.00')
        self.assertTrue(data['invoice_number'].startswith('INV-'))
        self.assertEqual(data['created_by_id'], 'billing-1')
        self.assertEqual(len(data['items']), 1)

    def test_due_date_in_past_rejected(self):
        response = self.create_invoice(due_date=(timezone.localdate() - timedelta(days=1)).isoformat())
        self.assertEqual(response.status_code, 400)

    def test_half_reference_rejected(self):
        response = self.create_invoice(items=[
            {'description': 'Extraction', 'unit_price': '800', 'reference_kind': 'treatment'},
        ])
        self.assertEqual(response.status_code, 400)

    def test_edit_draft_items(self):
        invoice_id = self.create_invoice().json()['data']['id']
        url = f'/api/billing/invoices/{invoice_id}/items/'

        added = self.client.post(url, {'description': 'X-ray', 'unit_price': '500'}, format='json', **self.headers)
        self.assertEqual(added.status_code, 201)
        self.assertEqual(added.json()['data']['grand_total'], '5000.00')

        item_id = added.json()['data']['items'][-1]['id']
        removed = self.client.delete(f'{url}{item_id}/', **self.headers)
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(removed.json()['data']['grand_total'], '4500.00')

    def test_replace_items_on_update(self):
        invoice_id = self.create_invoice().json()['data']['id']
        response = self.client.patch(f'/api/billing/invoices/{invoice_id}/', {
            'items': [{'description': 'Cleaning', 'unit_price': '700'}],
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['grand_total'], '700.00')
        self.assertEqual(Invoice.objects.get(pk=invoice_id).items.count(), 1)

    def test_issue_and_pay(self):
        invoice_id = self.create_invoice().json()['data']['id']

        issued = self.client.post(f'/api/billing/invoices/{invoice_id}/issue/', **self.headers)
        self.assertEqual(issued.status_code, 200)
        self.assertEqual(issued.json()['data']['status'], 'sent')

        paid = self.client.post(f'/api/billing/invoices/{invoice_id}/payment/', {
            'amount': '4500.00', 'payment_mode': 'upi',
        }, format='json', **self.headers)
        self.assertEqual(paid.status_code, 200)
        self.assertTrue(paid.json()['payment_number'].startswith('PAY-'))
        self.assertEqual(paid.json()['data']['status'], 'paid')
        self.assertEqual(paid.json()['data']['balance_due'], '0.00')

    def test_payment_on_draft_rejected(self):
        invoice_id = self.create_invoice().json()['data']['id']
        response = self.client.post(f'/api/billing/invoices/{invoice_id}/payment/', {
            'amount': '100.00',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invoice must be issued before recording payments')

    def test_overpayment_rejected(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        response = self.client.post(f'/api/billing/invoices/{invoice.id}/payment/', {
            'amount': '501.00',
        }, format='json', **self.headers)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['kind'], 'exceeds_balance')

    def test_pending_for_patient(self):
        open_invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        cancelled = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        cancelled.cancel()

        response = self.client.get(f'/api/billing/invoices/pending/{self.patient.id}/', **self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['id'] for row in response.json()['data']], [open_invoice.id])

    def test_by_number(self):
        invoice = self.make_invoice([{'description': 'Cleaning', 'unit_price': Decimal('500')}])
        response = self.client.get(f'/api/billing/invoices/number/{invoice.invoice_number}/', **self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['id'], invoice.id)
        self.assertEqual(
            self.client.get('/api/billing/invoices/number/INV-0000-9999/', **self.headers).status_code, 404
        )

    def test_overdue_endpoint(self):
        invoice = self.make_invoice(
            [{'description': 'Cleaning', 'unit_price': Decimal('500')}],
            due_date=timezone.localdate() - timedelta(days=2),
        )
        response = self.client.get('/api/billing/invoices/overdue/', **self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['id'] for row in response.json()['data']], [invoice.id])
        # Listing does not run the sweep
        self.assertEqual(Invoice.objects.get(pk=invoice.pk).status, 'sent')

        flag_overdue_invoices()
        response = self.client.get('/api/billing/invoices/overdue/', **self.headers)
        self.assertEqual([row['id'] for row in response.json()['data']], [invoice.id])

    def test_delete_cancels(self):
        invoice_id = self.create_invoice().json()['data']['id']
        response = self.client.delete(f'/api/billing/invoices/{invoice_id}/', **self.headers)

        self.assertEqual(response.status_code, 200)
        invoice = Invoice.objects.get(pk=invoice_id)
        self.assertEqual(invoice.status, 'cancelled')
        self.assertEqual(invoice.cancellation_reason, 'Deleted')
