"""Reception queue, confirm-to-doctor hand-off and insurance pre-approval."""
from unittest import mock

import pytest
from django.utils import timezone

from clinic.models import (
    ActivityLog,
    InsuranceApproval,
    InsurancePolicy,
    Notification,
    PatientVisit,
    QueueItem,
    Workflow,
    WorkflowExecution,
)
from clinic.services import billing, realtime

pytestmark = pytest.mark.django_db

QUEUE = '/api/reception/queue'


def enqueue(client, patient, **extra):
    return client.post(QUEUE, {'patient_id': patient.id, **extra}, format='json')


@pytest.fixture
def desk(api, reception):
    return api(reception)


def test_queue_numbers_count_up(desk, make_patient):
    first = enqueue(desk, make_patient('Sara Ali'))
    second = enqueue(desk, make_patient('Khalid Omar'))
    assert first.status_code == 201
    assert first.data['message'] == 'Queue number 1'
    assert second.data['data']['queue_number'] == 2
    assert second.data['data']['status'] == 'checked_in'


def test_patient_cannot_queue_twice_a_day(desk, patient):
    enqueue(desk, patient)
    response = enqueue(desk, patient)
    assert response.status_code == 409
    assert response.data['code'] == 'conflict'


def test_cancelled_patient_may_queue_again(desk, patient):
    item_id = enqueue(desk, patient).data['data']['id']
    assert desk.delete(f'{QUEUE}/{item_id}').data['data']['status'] == 'cancelled'
    response = enqueue(desk, patient)
    assert response.status_code == 201
    assert response.data['data']['queue_number'] == 2


def test_queue_list_puts_urgent_first(desk, make_patient):
    enqueue(desk, make_patient('Normal'))
    enqueue(desk, make_patient('Urgent'), priority='urgent')
    enqueue(desk, make_patient('High'), priority='high')
    response = desk.get(QUEUE)
    assert response.status_code == 200
    assert [i['patient_name'] for i in response.data['data']] == ['Urgent', 'High', 'Normal']
    assert response.data['date'] == timezone.localdate().isoformat()
    assert response.data['counts'] == {'checked_in': 3}


def test_queue_list_filters_by_status(desk, make_patient):
    enqueue(desk, make_patient('One'))
    item_id = enqueue(desk, make_patient('Two')).data['data']['id']
    desk.put(f'{QUEUE}/{item_id}', {'status': 'waiting'}, format='json')
    response = desk.get(QUEUE, {'status': 'waiting'})
    assert [i['patient_name'] for i in response.data['data']] == ['Two']


def test_unknown_patient_is_404(desk):
    response = desk.post(QUEUE, {'patient_id': 999}, format='json')
    assert response.status_code == 404


def test_queue_transitions(desk, patient):
    item_id = enqueue(desk, patient).data['data']['id']
    url = f'{QUEUE}/{item_id}'
    response = desk.put(url, {'status': 'in_progress'}, format='json')
    assert response.status_code == 400
    assert desk.put(url, {'status': 'waiting'}, format='json').status_code == 200
    response = desk.put(url, {'status': 'completed'}, format='json')
    assert response.status_code == 409
    assert response.data['error'] == 'Cannot change queue status from waiting to completed.'
    assert desk.put(url, {'status': 'no_show'}, format='json').status_code == 200
    assert desk.put(url, {'status': 'waiting'}, format='json').status_code == 409


def test_confirm_first_visit_to_doctor(desk, patient, doctor):
    item_id = enqueue(desk, patient).data['data']['id']
    response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 200
    data = response.data['data']
    assert data['visit']['status'] == 'confirmed_to_doctor'
    assert data['visit']['doctor_id'] == doctor.id
    assert data['queueItem']['status'] == 'in_progress'
    assert data['queueItem']['doctor_id'] == doctor.id
    assert data['paymentVerification']['canProceed'] is True
    assert data['paymentVerification']['reason'] == 'First visit consultation is free'
    note = Notification.objects.get(user=doctor)
    assert note.type == 'doctor_assignment'
    assert note.message == 'Sara Ali (queue #1) is ready for you'


def test_confirm_records_audit_broadcast_and_event_workflows(desk, patient, doctor, reception, center):
    Workflow.objects.create(
        name='Brief the doctor', category='clinical', trigger_type='event',
        trigger_config={'event': 'visit.confirmed'}, center=center,
        steps=[{'type': 'send_notification', 'config': {'title': 'Chart ready for {{patient_name}}'}}],
    )
    item_id = enqueue(desk, patient).data['data']['id']
    with mock.patch.object(realtime, 'broadcast') as broadcast:
        response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 200
    visit_id = response.data['data']['visit']['id']

    log = ActivityLog.objects.get(action='confirm_to_doctor')
    assert log.user_id == reception.id
    assert log.entity_type == 'patient_visit'
    assert log.entity_id == str(visit_id)
    assert log.detail['queue_item_id'] == item_id

    broadcast.assert_called_once_with(center.id, 'visit.confirmed', {
        'queueItemId': item_id, 'visitId': visit_id, 'doctorId': doctor.id, 'status': 'in_progress',
    })

    execution = WorkflowExecution.objects.get()
    assert execution.status == 'completed'
    assert execution.entity_type == 'patient_visit'
    assert execution.entity_id == str(visit_id)
    assert Notification.objects.filter(user=doctor, title='Chart ready for Sara Ali').count() == 1


def test_confirm_from_waiting(desk, patient, doctor):
    item_id = enqueue(desk, patient).data['data']['id']
    assert desk.put(f'{QUEUE}/{item_id}', {'status': 'waiting'}, format='json').status_code == 200
    response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 200
    item = QueueItem.objects.get(pk=item_id)
    assert item.status == 'in_progress'
    assert item.confirmed_to_doctor_at is not None


def test_confirm_refused_without_payment(desk, patient, doctor, returning):
    returning(patient)
    invoice = billing.create_invoice(patient=patient, items=[{'description': 'Follow-up', 'unit_price': 100}])
    item_id = enqueue(desk, patient).data['data']['id']
    response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 403
    assert response.data['success'] is False
    assert response.data['code'] == 'payment_required'
    assert response.data['requiredActions'] == ['payment', 'insurance_approval']
    assert response.data['paymentStatus']['invoiceId'] == invoice.id
    assert response.data['paymentStatus']['paid'] is False
    assert QueueItem.objects.get(pk=item_id).status == 'checked_in'
    assert not PatientVisit.objects.filter(queue_item_id=item_id).exists()


def test_confirm_requires_doctor_id(desk, patient):
    item_id = enqueue(desk, patient).data['data']['id']
    response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {}, format='json')
    assert response.status_code == 400
    assert response.data['error'] == 'doctor_id: Doctor ID is required'


def test_confirm_rejects_doctor_from_another_center(desk, patient, make_user, other_center):
    stranger = make_user('doctor2', 'doctor', center=other_center)
    item_id = enqueue(desk, patient).data['data']['id']
    response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': stranger.id}, format='json')
    assert response.status_code == 400
    assert 'doctor_id' in response.data['details']


def test_confirm_twice_conflicts(desk, patient, doctor):
    item_id = enqueue(desk, patient).data['data']['id']
    url = f'{QUEUE}/{item_id}/confirm-to-doctor'
    assert desk.post(url, {'doctor_id': doctor.id}, format='json').status_code == 200
    response = desk.post(url, {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 409


def test_confirm_other_centers_item_is_404(desk, doctor, make_patient, other_center):
    remote = make_patient('Huda Saleh', center=other_center)
    item = QueueItem.objects.create(center=other_center, patient=remote, queue_date=timezone.localdate(),
                                    queue_number=1)
    response = desk.post(f'{QUEUE}/{item.id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
    assert response.status_code == 404


def test_payment_verify_endpoint(desk, patient):
    response = desk.post('/api/reception/payment/verify', {'patient_id': patient.id}, format='json')
    assert response.status_code == 200
    assert response.data['data'] == {
        'canProceed': True,
        'reason': 'First visit consultation is free',
        'requiredActions': [],
        'warnings': [],
        'paymentStatus': None,
    }


def test_reception_dashboard_stats(desk, patient):
    enqueue(desk, patient)
    data = desk.get('/api/reception/dashboard/stats').data['data']
    assert data['queue']['total'] == 1
    assert data['queue']['waiting'] == 1
    assert data['patients_registered_today'] == 1


class TestInsuranceApproval:
    URL = '/api/reception/insurance/request-approval'

    def request(self, client, patient, **extra):
        body = {'patient_id': patient.id, 'service_type': 'therapy', 'requested_amount': '450.00', **extra}
        return client.post(self.URL, body, format='json')

    def test_request_and_duplicate(self, desk, patient):
        response = self.request(desk, patient, insurance_provider='Bupa')
        assert response.status_code == 201
        assert response.data['data']['status'] == 'pending'
        assert response.data['data']['requested_amount'] == 450.0
        assert self.request(desk, patient, insurance_provider='Bupa').status_code == 409

    def test_provider_falls_back_to_active_policy(self, desk, patient):
        InsurancePolicy.objects.create(patient=patient, provider='Tawuniya', policy_number='P-77')
        response = self.request(desk, patient)
        assert response.status_code == 201
        assert response.data['data']['insurance_provider'] == 'Tawuniya'

    def test_request_without_provider_or_policy(self, desk, patient):
        response = self.request(desk, patient)
        assert response.status_code == 400
        assert 'insurance_provider' in response.data['details']

    def test_supervisor_decides_and_requester_is_notified(self, desk, api, supervisor, patient, reception):
        approval_id = self.request(desk, patient, insurance_provider='Bupa').data['data']['id']
        url = f'/api/insurance/approvals/{approval_id}/decision'
        response = api(supervisor).post(url, {'decision': 'approved', 'approval_number': 'BUPA-1'}, format='json')
        assert response.status_code == 200
        assert response.data['data']['status'] == 'approved'
        assert response.data['data']['decided_by'] == supervisor.id
        note = Notification.objects.get(user=reception)
        assert note.title == 'Insurance approval approved'

        again = api(supervisor).post(url, {'decision': 'rejected', 'rejection_reason': 'late'}, format='json')
        assert again.status_code == 409

        check = desk.get('/api/reception/insurance/check-approval', {'patient_id': patient.id})
        assert check.data['data']['approved'] is True
        assert check.data['data']['status'] == 'approved'
        assert check.data['data']['approval']['approval_number'] == 'BUPA-1'

    def test_approved_request_blocks_a_new_one(self, desk, api, admin, patient):
        approval_id = self.request(desk, patient, insurance_provider='Bupa').data['data']['id']
        api(admin).post(f'/api/insurance/approvals/{approval_id}/decision', {'decision': 'approved'}, format='json')
        assert self.request(desk, patient, insurance_provider='Bupa').status_code == 409

    def test_rejection_needs_reason(self, desk, api, supervisor, patient):
        approval_id = self.request(desk, patient, insurance_provider='Bupa').data['data']['id']
        url = f'/api/insurance/approvals/{approval_id}/decision'
        response = api(supervisor).post(url, {'decision': 'rejected'}, format='json')
        assert response.status_code == 400
        assert InsuranceApproval.objects.get(pk=approval_id).status == 'pending'

    def test_reception_cannot_decide(self, desk, patient):
        approval_id = self.request(desk, patient, insurance_provider='Bupa').data['data']['id']
        response = desk.post(f'/api/insurance/approvals/{approval_id}/decision', {'decision': 'approved'},
                             format='json')
        assert response.status_code == 403

    def test_check_without_any_request(self, desk, patient):
        data = desk.get('/api/reception/insurance/check-approval', {'patient_id': patient.id}).data['data']
        assert data == {'approved': False, 'status': None, 'approval': None}

    def test_approval_lets_returning_patient_through(self, desk, api, supervisor, patient, doctor, returning):
        returning(patient)
        billing.create_invoice(patient=patient, items=[{'description': 'Therapy', 'unit_price': 450}])
        approval_id = self.request(desk, patient, insurance_provider='Bupa').data['data']['id']
        api(supervisor).post(f'/api/insurance/approvals/{approval_id}/decision', {'decision': 'approved'},
                             format='json')
        item_id = enqueue(desk, patient).data['data']['id']
        response = desk.post(f'{QUEUE}/{item_id}/confirm-to-doctor', {'doctor_id': doctor.id}, format='json')
        assert response.status_code == 200
        assert response.data['data']['paymentVerification']['reason'] == 'Insurance approval on file'
