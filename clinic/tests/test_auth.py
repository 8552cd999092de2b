"""
Authentication and access control tests.

Login returns a DRF token and a JWT pair; the role always comes from
the database.  Role gates answer 403, missing credentials 401, and
center scoping hides other tenants' rows behind 404.
"""
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.test import APIClient, APITestCase

from ..models import Center, Patient, User

PASSWORD = 'Cl1nic-pass!'


class AuthAPITests(APITestCase):
    def setUp(self) -> None:
        self.center = Center.objects.create(id='riyadh', name='Riyadh Main')
        self.other = Center.objects.create(id='jeddah', name='Jeddah North')
        self.reception = User.objects.create_user(
            username='reception1', password=PASSWORD, role='reception', center=self.center,
            email='desk@example.com',
        )
        self.patient_user = User.objects.create_user(
            username='patient1', password=PASSWORD, role='patient', center=self.center,
        )
        self.local_patient = Patient.objects.create(center=self.center, name='Sara Ali', phone='0501111111')
        self.remote_patient = Patient.objects.create(center=self.other, name='Huda Saleh', phone='0502222222')

    def login(self, username: str, password: str = PASSWORD, **extra):
        return self.client.post('/api/auth/login', {'username': username, 'password': password, **extra},
                                format='json')

    def token_client(self, token: str) -> APIClient:
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Token {token}')
        return client

    def test_login_returns_tokens_and_database_role(self):
        response = self.login('patient1', role='admin')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.data['data']
        self.assertTrue(response.data['success'])
        self.assertTrue(data['token'])
        self.assertTrue(data['jwt_access'])
        self.assertTrue(data['jwt_refresh'])
        self.assertEqual(data['user']['role'], 'patient')
        self.assertIn('appointments:create', data['user']['permissions'])
        self.patient_user.refresh_from_db()
        self.assertEqual(self.patient_user.role, 'patient')

    def test_login_with_email(self):
        response = self.client.post('/api/auth/login', {'email': 'desk@example.com', 'password': PASSWORD},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['user']['username'], 'reception1')

    def test_wrong_password_is_rejected(self):
        response = self.login('reception1', 'nope')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['code'], 'invalid_credentials')

    def test_login_requires_username(self):
        response = self.client.post('/api/auth/login', {'password': PASSWORD}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid')
        self.assertIn('username', response.data['details'])

    def test_login_is_throttled(self):
        for _ in range(10):
            self.assertEqual(self.login('reception1', 'nope').status_code, status.HTTP_401_UNAUTHORIZED)
        response = self.login('reception1', 'nope')
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)
        self.assertEqual(response.data['code'], 'throttled')

    def test_token_authenticates_me(self):
        token = self.login('reception1').data['data']['token']
        response = self.token_client(token).get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['role'], 'reception')
        self.assertEqual(response.data['data']['center_id'], 'riyadh')

    def test_missing_credentials_answer_401(self):
        response = APIClient().get('/api/patients')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['code'], 'not_authenticated')

    def test_logout_drops_token(self):
        token = self.login('reception1').data['data']['token']
        client = self.token_client(token)
        response = client.post('/api/auth/logout', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['blacklisted'], 1)
        self.assertFalse(Token.objects.filter(user=self.reception).exists())
        self.assertEqual(client.get('/api/auth/me').status_code, status.HTTP_401_UNAUTHORIZED)

    def test_refresh_issues_new_access_token(self):
        refresh = self.login('reception1').data['data']['jwt_refresh']
        response = APIClient().post('/api/auth/refresh', {'refresh': refresh}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['data']['jwt_access'])

    def test_refresh_with_garbage_token(self):
        response = APIClient().post('/api/auth/refresh', {'refresh': 'not-a-token'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['code'], 'token_not_valid')

    def test_jwt_access_token_authenticates(self):
        access = self.login('reception1').data['data']['jwt_access']
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {access}')
        response = client.get('/api/auth/me')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['username'], 'reception1')

    def test_role_gate_answers_403(self):
        client = APIClient()
        client.force_authenticate(user=self.patient_user)
        response = client.get('/api/reception/queue')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(response.data['success'])
        self.assertEqual(response.data['code'], 'permission_denied')

    def test_center_scoping_hides_other_tenants(self):
        client = APIClient()
        client.force_authenticate(user=self.reception)
        listing = client.get('/api/patients')
        ids = [p['id'] for p in listing.data['data']]
        self.assertEqual(ids, [self.local_patient.id])
        response = client.get(f'/api/patients/{self.remote_patient.id}')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Patient not found')
