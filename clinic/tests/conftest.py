import pytest
from django.core.cache import cache
from django.utils import timezone
from rest_framework.test import APIClient

from clinic.models import Center, Patient, PatientVisit, User

PASSWORD = 'Cl1nic-pass!'


@pytest.fixture(autouse=True)
def _clear_cache():
    # rules cache and throttle counters
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def center(db):
    return Center.objects.create(id='riyadh', name='Riyadh Main', whatsapp_phone_number_id='PNID-1')


@pytest.fixture
def other_center(db):
    return Center.objects.create(id='jeddah', name='Jeddah North')


@pytest.fixture
def make_user(db, center):
    def _make(username, role, center=center, **extra):
        return User.objects.create_user(username=username, password=PASSWORD, role=role, center=center, **extra)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user('admin1', 'admin')


@pytest.fixture
def doctor(make_user):
    return make_user('doctor1', 'doctor', first_name='Omar', last_name='Haddad')


@pytest.fixture
def reception(make_user):
    return make_user('reception1', 'reception')


@pytest.fixture
def staff(make_user):
    return make_user('staff1', 'staff')


@pytest.fixture
def supervisor(make_user):
    return make_user('supervisor1', 'supervisor')


@pytest.fixture
def api():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client


@pytest.fixture
def make_patient(center):
    counter = {'n': 0}

    def _make(name='Sara Ali', center=center, **extra):
        counter['n'] += 1
        extra.setdefault('phone', f'05012345{counter["n"]:02d}')
        return Patient.objects.create(center=center, name=name, **extra)
    return _make


@pytest.fixture
def patient(make_patient):
    return make_patient()


@pytest.fixture
def returning(doctor):
    """Give a patient a finished earlier visit so the first visit is no longer free."""
    def _mark(p):
        return PatientVisit.objects.create(
            center_id=p.center_id, patient=p, doctor=doctor, visit_date=timezone.now(),
            status=PatientVisit.STATUS_COMPLETED,
        )
    return _mark
