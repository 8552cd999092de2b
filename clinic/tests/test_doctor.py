import pytest
from django.utils import timezone

from clinic.models import BusinessRule, InsuranceApproval, PatientVisit, QueueItem
from clinic.services.sessions import validate_session_data

pytestmark = pytest.mark.django_db

BASIC = {'patient_id': 1, 'doctor_id': 2, 'session_type': 'consultation'}
NARRATIVE = {
    'chief_complaint': 'Lower back pain',
    'assessment': 'Muscle strain',
    'plan': 'Physiotherapy twice a week',
    'diagnosis': 'M54.5',
}


def session_rule(message, condition, action='block', required=None):
    if required is not None:
        condition = dict(condition, required_fields=required)
    return BusinessRule.objects.create(name=message, rule_type='session_data_complete', condition=condition,
                                       action=action, applies_to=['doctor'], error_message=message)


class TestValidateSessionData:
    def test_basic_fields_are_required(self):
        result = validate_session_data({'patient_id': 1, 'session_type': '  '})
        assert result == {
            'isValid': False,
            'isComplete': False,
            'missingFields': ['doctor_id', 'session_type'],
            'warnings': [],
            'suggestions': [],
        }

    def test_valid_but_incomplete_without_narrative(self):
        result = validate_session_data(dict(BASIC))
        assert result['isValid'] is True
        assert result['isComplete'] is False
        assert len(result['suggestions']) == 4

    def test_complete_with_narrative(self):
        result = validate_session_data({**BASIC, **NARRATIVE})
        assert result['isValid'] and result['isComplete']
        assert result['missingFields'] == []

    def test_insurance_requires_narrative(self):
        result = validate_session_data({**BASIC, 'insurance_approval_id': 7, 'chief_complaint': 'Pain'})
        assert result['isValid'] is False
        assert result['missingFields'] == ['assessment', 'plan', 'diagnosis']

    def test_rules_add_required_fields_and_warnings(self):
        session_rule('Treatment must be recorded', {'field': 'session.treatment', 'exists': True},
                     required=['treatment'])
        session_rule('Consider adding notes', {'field': 'session.notes', 'exists': True}, action='warn')
        result = validate_session_data({**BASIC, **NARRATIVE})
        assert result['isValid'] is False
        assert result['missingFields'] == ['treatment']
        assert result['warnings'] == ['Treatment must be recorded', 'Consider adding notes']


@pytest.fixture
def visit(patient, doctor, reception):
    item = QueueItem.objects.create(center_id=patient.center_id, patient=patient, doctor=doctor,
                                    queue_date=timezone.localdate(), queue_number=1, status='in_progress')
    now = timezone.now()
    return PatientVisit.objects.create(center_id=patient.center_id, patient=patient, doctor=doctor,
                                       queue_item=item, confirmed_by=reception, visit_date=now,
                                       confirmed_to_doctor_time=now)


@pytest.fixture
def clinician(api, doctor):
    return api(doctor)


def test_doctor_queue_lists_confirmed_visits(clinician, visit, make_user, make_patient):
    colleague = make_user('doctor2', 'doctor')
    PatientVisit.objects.create(center_id=visit.center_id, patient=make_patient('Other'), doctor=colleague,
                                visit_date=timezone.now())
    response = clinician.get('/api/doctor/queue')
    assert response.status_code == 200
    assert [v['id'] for v in response.data['data']] == [visit.id]


def test_reception_cannot_open_doctor_queue(api, reception):
    assert api(reception).get('/api/doctor/queue').status_code == 403


def test_visit_lifecycle_updates_queue(clinician, visit):
    url = f'/api/doctor/visits/{visit.id}/status'
    response = clinician.put(url, {'status': 'completed'}, format='json')
    assert response.status_code == 409
    assert clinician.put(url, {'status': 'in_progress'}, format='json').data['data']['status'] == 'in_progress'
    response = clinician.put(url, {'status': 'completed'}, format='json')
    assert response.status_code == 200
    assert response.data['data']['completed_at'] is not None
    assert QueueItem.objects.get(pk=visit.queue_item_id).status == 'completed'


def test_other_doctors_visit_is_hidden(api, make_user, visit):
    colleague = make_user('doctor2', 'doctor')
    response = api(colleague).put(f'/api/doctor/visits/{visit.id}/status', {'status': 'in_progress'},
                                  format='json')
    assert response.status_code == 404


def test_session_starts_the_visit(clinician, visit, patient):
    response = clinician.post('/api/doctor/sessions', {
        'patient_id': patient.id, 'visit_id': visit.id, 'session_type': 'consultation',
        'chief_complaint': 'Headache',
    }, format='json')
    assert response.status_code == 201
    assert response.data['data']['visit_id'] == visit.id
    assert response.data['data']['chief_complaint'] == 'Headache'
    visit.refresh_from_db()
    assert visit.status == PatientVisit.STATUS_IN_PROGRESS
    assert visit.started_at is not None


def test_doctor_cannot_open_session_for_unassigned_patient(clinician, make_patient):
    stranger = make_patient('Stranger')
    response = clinician.post('/api/doctor/sessions', {'patient_id': stranger.id, 'session_type': 'consultation'},
                              format='json')
    assert response.status_code == 404


def test_insurance_session_needs_narrative_to_complete(clinician, visit, patient):
    approval = InsuranceApproval.objects.create(
        center_id=patient.center_id, patient=patient, insurance_provider='Bupa', service_type='consultation',
        requested_amount=300, status=InsuranceApproval.STATUS_APPROVED,
    )
    session_id = clinician.post('/api/doctor/sessions', {
        'patient_id': patient.id, 'visit_id': visit.id, 'session_type': 'consultation',
        'insurance_approval_id': approval.id, 'chief_complaint': 'Headache',
    }, format='json').data['data']['id']
    url = f'/api/doctor/sessions/{session_id}'

    response = clinician.put(url, {'status': 'completed'}, format='json')
    assert response.status_code == 400
    assert response.data['code'] == 'incomplete_session'
    assert response.data['validation']['missingFields'] == ['assessment', 'plan', 'diagnosis']
    assert clinician.get(url).data['data']['status'] == 'scheduled'

    response = clinician.put(url, {'status': 'completed', 'assessment': 'Tension headache',
                                   'plan': 'Rest and fluids', 'diagnosis': 'G44.2'}, format='json')
    assert response.status_code == 200
    assert response.data['data']['status'] == 'completed'

    response = clinician.put(url, {'notes': 'late addition'}, format='json')
    assert response.status_code == 409


def test_pending_approval_cannot_be_attached(clinician, visit, patient):
    pending = InsuranceApproval.objects.create(
        center_id=patient.center_id, patient=patient, insurance_provider='Bupa', service_type='consultation',
        requested_amount=300,
    )
    response = clinician.post('/api/doctor/sessions', {
        'patient_id': patient.id, 'visit_id': visit.id, 'session_type': 'consultation',
        'insurance_approval_id': pending.id,
    }, format='json')
    assert response.status_code == 400
    assert 'insurance_approval_id' in response.data['details']


def test_validate_endpoint_fills_in_doctor(clinician, patient):
    response = clinician.post('/api/doctor/sessions/validate', {
        'patient_id': patient.id, 'session_type': 'consultation', **NARRATIVE,
    }, format='json')
    assert response.status_code == 200
    assert response.data['data']['isComplete'] is True


def test_doctor_dashboard(clinician, visit):
    data = clinician.get('/api/doctor/dashboard/stats').data['data']
    assert data['waiting'] == 1
    assert data['in_progress'] == 0
    assert data['sessions']['total'] == 0
