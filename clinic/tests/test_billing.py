from datetime import timedelta
from decimal import Decimal

import pytest
from django.test import override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic.exceptions import Conflict
from clinic.models import Invoice, Notification
from clinic.services import billing

URL = '/api/billing/invoices'


class TestComputeTotals:
    def test_tax_applies_after_discount(self):
        totals = billing.compute_totals(
            [{'unit_price': '100', 'quantity': 2}, {'unit_price': '50'}], discount='50', tax_rate='0.15',
        )
        assert totals == {
            'subtotal': Decimal('250.00'),
            'discount': Decimal('50.00'),
            'tax_rate': Decimal('0.15'),
            'tax': Decimal('30.00'),
            'total': Decimal('230.00'),
        }

    def test_rounds_half_up(self):
        totals = billing.compute_totals([{'unit_price': '33.33'}], tax_rate='0.15')
        assert totals['tax'] == Decimal('5.00')
        assert totals['total'] == Decimal('38.33')
        assert billing.money('10.005') == Decimal('10.01')

    def test_discount_cannot_exceed_subtotal(self):
        with pytest.raises(ValidationError):
            billing.compute_totals([{'unit_price': '20'}], discount='20.01')

    @override_settings(BILLING_TAX_RATE='0.05')
    def test_default_rate_comes_from_settings(self):
        assert billing.compute_totals([{'unit_price': '100'}])['tax'] == Decimal('5.00')

    def test_invoice_numbers_are_unique(self):
        numbers = {billing.generate_invoice_number() for _ in range(50)}
        assert len(numbers) == 50
        assert all(n.startswith('INV-') for n in numbers)


@pytest.mark.django_db
class TestInvoiceService:
    def test_create_stores_items(self, patient):
        invoice = billing.create_invoice(patient=patient, items=[
            {'description': 'Consultation', 'unit_price': '150', 'quantity': 1},
            {'description': 'Dressing', 'unit_price': '12.50', 'quantity': 2},
        ])
        assert invoice.subtotal == Decimal('175.00')
        assert invoice.total == Decimal('201.25')
        assert invoice.status == Invoice.STATUS_PENDING
        assert [i.total_price for i in invoice.items.order_by('id')] == [Decimal('150.00'), Decimal('25.00')]
        assert invoice.due_date > timezone.now() + timedelta(days=6)

    def test_empty_invoice_is_rejected(self, patient):
        with pytest.raises(ValidationError):
            billing.create_invoice(patient=patient, items=[])

    def test_paid_invoice_is_final(self, patient):
        invoice = billing.create_invoice(patient=patient, items=[{'description': 'X', 'unit_price': 10}])
        paid = billing.mark_paid(invoice.id, payment_method='card')
        assert paid.status == Invoice.STATUS_PAID
        assert paid.paid_at is not None
        with pytest.raises(Conflict):
            billing.mark_paid(invoice.id)
        with pytest.raises(Conflict):
            billing.cancel_invoice(paid)

    def test_refresh_overdue(self, patient):
        late = billing.create_invoice(patient=patient, items=[{'description': 'X', 'unit_price': 10}],
                                      due_date=timezone.now() - timedelta(hours=1))
        on_time = billing.create_invoice(patient=patient, items=[{'description': 'Y', 'unit_price': 10}])
        assert billing.refresh_overdue() == 1
        late.refresh_from_db()
        on_time.refresh_from_db()
        assert late.status == Invoice.STATUS_OVERDUE
        assert on_time.status == Invoice.STATUS_PENDING
        # overdue invoices can still be paid
        assert billing.mark_paid(late.id).status == Invoice.STATUS_PAID

    def test_summarize(self, patient):
        paid = billing.create_invoice(patient=patient, items=[{'description': 'A', 'unit_price': 200}])
        billing.mark_paid(paid.id)
        billing.create_invoice(patient=patient, items=[{'description': 'B', 'unit_price': 100}])
        billing.create_invoice(patient=patient, items=[{'description': 'C', 'unit_price': 20}],
                               due_date=timezone.now() - timedelta(days=2))
        billing.refresh_overdue()
        cancelled = billing.create_invoice(patient=patient, items=[{'description': 'D', 'unit_price': 999}])
        billing.cancel_invoice(cancelled)
        summary = billing.summarize(Invoice.objects.all())
        assert summary == {
            'count': 4,
            'paid_count': 1,
            'pending_count': 1,
            'overdue_count': 1,
            'revenue': 230.0,
            'outstanding': 138.0,
        }


@pytest.mark.django_db
class TestInvoiceAPI:
    @pytest.fixture
    def desk(self, api, reception):
        return api(reception)

    def create(self, client, patient, **extra):
        body = {'patient_id': patient.id, 'items': [{'description': 'Therapy session', 'price': '200'}], **extra}
        return client.post(URL, body, format='json')

    def test_reception_creates_invoice(self, desk, patient):
        response = self.create(desk, patient)
        assert response.status_code == 201
        data = response.data['data']
        assert data['subtotal'] == 200.0
        assert data['tax'] == 30.0
        assert data['total'] == 230.0
        assert data['items'][0]['unit_price'] == 200.0
        assert data['status'] == 'pending'

    def test_explicit_rate_and_discount(self, desk, patient):
        data = self.create(desk, patient, discount='20', tax_rate='0').data['data']
        assert data['total'] == 180.0

    def test_discount_above_subtotal(self, desk, patient):
        response = self.create(desk, patient, discount='500')
        assert response.status_code == 400
        assert response.data['error'] == 'discount: Discount cannot exceed the subtotal.'
        assert not Invoice.objects.exists()

    def test_item_needs_a_price(self, desk, patient):
        response = desk.post(URL, {'patient_id': patient.id, 'items': [{'description': 'Free?'}]}, format='json')
        assert response.status_code == 400

    def test_doctor_cannot_create(self, api, doctor, patient):
        response = self.create(api(doctor), patient)
        assert response.status_code == 403
        assert response.data['error'] == 'Insufficient permissions'

    def test_pay_once(self, desk, patient, make_user):
        patient.user = make_user('patient1', 'patient')
        patient.save()
        invoice_id = self.create(desk, patient).data['data']['id']
        response = desk.post(f'{URL}/{invoice_id}/pay', {'payment_method': 'card'}, format='json')
        assert response.status_code == 200
        assert response.data['data']['status'] == 'paid'
        assert response.data['data']['payment_method'] == 'card'
        assert Notification.objects.filter(user=patient.user, title='Payment received').exists()
        again = desk.post(f'{URL}/{invoice_id}/pay', {}, format='json')
        assert again.status_code == 409

    def test_paid_invoice_is_immutable(self, desk, patient):
        invoice_id = self.create(desk, patient).data['data']['id']
        desk.post(f'{URL}/{invoice_id}/pay', {}, format='json')
        assert desk.put(f'{URL}/{invoice_id}', {'notes': 'edit'}, format='json').status_code == 409
        assert desk.delete(f'{URL}/{invoice_id}').status_code == 409
        # repeating the current status is not a change
        assert desk.put(f'{URL}/{invoice_id}', {'status': 'paid'}, format='json').status_code == 200

    def test_pay_through_status_update(self, desk, patient):
        invoice_id = self.create(desk, patient).data['data']['id']
        response = desk.put(f'{URL}/{invoice_id}', {'status': 'paid', 'payment_method': 'transfer'}, format='json')
        assert response.status_code == 200
        assert response.data['data']['status'] == 'paid'
        assert response.data['data']['payment_method'] == 'transfer'

    def test_delete_cancels_unpaid(self, desk, patient):
        invoice_id = self.create(desk, patient).data['data']['id']
        response = desk.delete(f'{URL}/{invoice_id}')
        assert response.status_code == 200
        assert response.data['data']['status'] == 'cancelled'

    def test_list_flags_overdue(self, desk, patient):
        billing.create_invoice(patient=patient, items=[{'description': 'X', 'unit_price': 10}],
                               due_date=timezone.now() - timedelta(days=1))
        response = desk.get(URL)
        assert response.data['data'][0]['status'] == 'overdue'
        assert desk.get(URL, {'status': 'pending'}).data['data'] == []

    def test_other_center_invoice_is_hidden(self, desk, make_patient, other_center):
        remote = make_patient('Remote', center=other_center)
        invoice = billing.create_invoice(patient=remote, items=[{'description': 'X', 'unit_price': 10}])
        assert desk.get(f'{URL}/{invoice.id}').status_code == 404

    def test_summary(self, desk, patient):
        paid_id = self.create(desk, patient).data['data']['id']
        desk.post(f'{URL}/{paid_id}/pay', {}, format='json')
        self.create(desk, patient)
        data = desk.get('/api/billing/summary', {'period': 'today'}).data['data']
        assert data['period'] == 'today'
        assert data['count'] == 2
        assert data['revenue'] == 230.0
        assert data['outstanding'] == 230.0
