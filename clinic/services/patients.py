"""Patient visibility and registration helpers."""
from django.db.models import Q
from rest_framework.exceptions import ValidationError

from clinic.exceptions import Conflict
from clinic.models import Center, Patient
from clinic.permissions import scope_to_center


def visible_patients(user):
    """Patients the user may read.

    Doctors only see patients handed to them (a visit) or booked with
    them (an appointment); patients and guardians see their own records.
    """
    qs = scope_to_center(Patient.objects.all(), user)
    role = getattr(user, 'role', None)
    if role == 'doctor':
        return qs.filter(Q(visits__doctor=user) | Q(appointments__doctor=user)).distinct()
    if role == 'patient':
        return qs.filter(user=user)
    if role == 'guardian':
        return qs.filter(guardian=user)
    return qs


def resolve_center(user, center_id=None) -> Center:
    """Center a new row belongs to: the user's own, or an explicit one for operators."""
    if getattr(user, 'center_id', None):
        return user.center
    center = Center.objects.filter(pk=center_id, is_active=True).first() if center_id else None
    if center is None:
        raise ValidationError({'center_id': ['A valid center is required.']})
    return center


def create_patient(user, **fields) -> Patient:
    center = resolve_center(user, fields.pop('center_id', None))
    phone = fields.get('phone')
    if Patient.objects.filter(center=center, phone=phone, status=Patient.STATUS_ACTIVE).exists():
        raise Conflict('A patient with this phone number already exists.')
    return Patient.objects.create(center=center, created_by=user, **fields)
