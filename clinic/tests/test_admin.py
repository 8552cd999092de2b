from io import StringIO

import pytest
from django.core.management import call_command

from clinic.models import BusinessRule, Center, User
from clinic.services import billing
from clinic.services.payments import verify_payment
from clinic.services.rules import rules_engine

pytestmark = pytest.mark.django_db

USERS = '/api/users'


class TestUserAdministration:
    def test_create_user_in_own_center(self, api, admin):
        response = api(admin).post(USERS, {
            'username': 'newdoc', 'password': 'Str0ng-enough!', 'role': 'doctor',
            'first_name': 'Mona', 'last_name': 'Fahad', 'specialty': 'Pediatrics',
            'center_id': 'somewhere-else',
        }, format='json')
        assert response.status_code == 201
        data = response.data['data']
        assert data['center_id'] == admin.center_id
        assert data['name'] == 'Mona Fahad'
        assert User.objects.get(username='newdoc').check_password('Str0ng-enough!')

    def test_weak_password_is_rejected(self, api, admin):
        response = api(admin).post(USERS, {'username': 'weak', 'password': '123', 'role': 'staff'}, format='json')
        assert response.status_code == 400
        assert 'password' in response.data['details']

    def test_duplicate_username(self, api, admin, reception):
        response = api(admin).post(USERS, {'username': reception.username, 'password': 'Str0ng-enough!',
                                           'role': 'staff'}, format='json')
        assert response.status_code == 409

    def test_list_is_scoped_and_filterable(self, api, admin, doctor, reception, make_user, other_center):
        make_user('faraway', 'doctor', center=other_center)
        client = api(admin)
        names = [u['username'] for u in client.get(USERS).data['data']]
        assert names == ['admin1', 'doctor1', 'reception1']
        doctors = client.get(USERS, {'role': 'doctor'}).data['data']
        assert [u['username'] for u in doctors] == ['doctor1']

    def test_detail_lists_permissions(self, api, admin, reception):
        data = api(admin).get(f'{USERS}/{reception.id}').data['data']
        assert 'billing:process_payment' in data['permissions']
        assert 'users:create' not in data['permissions']

    def test_update_role_and_password(self, api, admin, staff):
        response = api(admin).put(f'{USERS}/{staff.id}', {'role': 'reception', 'password': 'N3w-pass-word!'},
                                  format='json')
        assert response.status_code == 200
        staff.refresh_from_db()
        assert staff.role == 'reception'
        assert staff.check_password('N3w-pass-word!')

    def test_deactivate(self, api, admin, staff):
        client = api(admin)
        assert client.delete(f'{USERS}/{staff.id}').data['data']['is_active'] is False
        response = client.delete(f'{USERS}/{admin.id}')
        assert response.status_code == 400
        assert response.data['error'] == 'You cannot deactivate your own account.'

    def test_other_center_user_is_hidden(self, api, admin, make_user, other_center):
        stranger = make_user('faraway', 'staff', center=other_center)
        assert api(admin).get(f'{USERS}/{stranger.id}').status_code == 404

    def test_non_admin_is_refused(self, api, supervisor):
        assert api(supervisor).get(USERS).status_code == 403


def test_admin_dashboard(api, admin, doctor, reception, patient):
    data = api(admin).get('/api/admin/dashboard/stats').data['data']
    assert data['users'] == {'admin': 1, 'doctor': 1, 'reception': 1}
    assert data['patients'] == {'total': 1, 'new_this_month': 1}
    assert data['billing']['count'] == 0
    assert data['workflow_executions'] == {}


def test_reception_dashboard_refused_to_doctor(api, doctor):
    assert api(doctor).get('/api/reception/dashboard/stats').status_code == 403


def test_healthz(client):
    response = client.get('/healthz')
    assert response.status_code == 200
    assert response.json() == {'success': True, 'data': {'db': True, 'cache': True}}


def test_unknown_route_is_404(api, admin):
    assert api(admin).get('/api/nothing-here').status_code == 404


class TestManagementCommands:
    def test_ensure_demo_users_is_idempotent(self):
        out = StringIO()
        call_command('ensure_demo_users', stdout=out)
        call_command('ensure_demo_users', stdout=out)
        assert Center.objects.filter(id='demo').exists()
        demo = User.objects.filter(center_id='demo')
        assert demo.count() == 7
        assert sorted(demo.values_list('role', flat=True)) == sorted(
            ['admin', 'doctor', 'reception', 'staff', 'supervisor', 'patient', 'guardian'])
        assert User.objects.get(username='reception1').check_password('demo12345')
        assert 'ok: admin1 (admin)' in out.getvalue()

    def test_ensure_demo_users_resets_role(self):
        call_command('ensure_demo_users', stdout=StringIO())
        User.objects.filter(username='doctor1').update(role='patient', is_active=False)
        call_command('ensure_demo_users', '--password', 'changed-123', stdout=StringIO())
        doc = User.objects.get(username='doctor1')
        assert doc.role == 'doctor' and doc.is_active
        assert doc.check_password('changed-123')

    def test_seed_business_rules(self):
        rules_engine.load_rules()
        call_command('seed_business_rules', stdout=StringIO())
        assert BusinessRule.objects.count() == 2
        assert len(rules_engine.load_rules()) == 2

        out = StringIO()
        call_command('seed_business_rules', stdout=out)
        assert 'nothing to do' in out.getvalue()

        call_command('seed_business_rules', '--force', stdout=StringIO())
        assert BusinessRule.objects.count() == 2

    def test_seeded_rules_gate_payment(self, patient, returning):
        call_command('seed_business_rules', stdout=StringIO())
        returning(patient)
        billing.create_invoice(patient=patient, items=[{'description': 'Visit', 'unit_price': 100}])
        result = verify_payment(patient, session_type='therapy')
        assert not result.can_proceed
        assert result.reason == 'Payment or an insurance approval is required before opening a session'
        assert result.required_actions == ['payment', 'insurance_approval']
