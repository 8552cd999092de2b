"""
Doctor endpoints.

A doctor's queue is the list of visits reception confirmed to them.
Clinical sessions record the consultation itself; a session can only be
completed once its data passes :func:`~clinic.services.sessions.validate_session_data`.
"""
from __future__ import annotations

from django.db.models import Count, Q
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..exceptions import Conflict
from ..models import Appointment, ClinicalSession, InsuranceApproval, PatientVisit, User
from ..permissions import IsDoctorRole, scope_to_center
from ..responses import fail, ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.reception import VisitStatusSerializer
from ..serializers.sessions import (
    CLINICAL_FIELDS,
    SessionCreateSerializer,
    SessionUpdateSerializer,
    SessionValidateSerializer,
)
from ..services import realtime
from ..services.audit import log_action
from ..services.patients import visible_patients
from ..services.reception import update_visit_status
from ..services.sessions import validate_session_data
from .patients import serialize_visit


def _own(qs, user: User, field: str = 'doctor'):
    """Doctors see their own rows, admins the whole center."""
    if user.role == User.ROLE_DOCTOR:
        return qs.filter(**{field: user})
    return scope_to_center(qs, user)


def serialize_session(s: ClinicalSession) -> dict:
    data = {
        'id': s.id,
        'center_id': s.center_id,
        'doctor_id': s.doctor_id,
        'patient_id': s.patient_id,
        'patient_name': s.patient.name,
        'appointment_id': s.appointment_id,
        'visit_id': s.visit_id,
        'insurance_approval_id': s.insurance_approval_id,
        'date': s.date.isoformat(),
        'duration': s.duration,
        'session_type': s.session_type,
        'status': s.status,
        'created_at': s.created_at.isoformat(),
        'updated_at': s.updated_at.isoformat(),
    }
    for field in CLINICAL_FIELDS:
        data[field] = getattr(s, field)
    return data


def _session_payload(s: ClinicalSession) -> dict:
    data = {field: getattr(s, field) for field in CLINICAL_FIELDS}
    data.update(patient_id=s.patient_id, doctor_id=s.doctor_id, session_type=s.session_type,
                insurance_approval_id=s.insurance_approval_id)
    return data


def _approved_approval(patient, approval_id):
    if not approval_id:
        return None
    approval = InsuranceApproval.objects.filter(
        pk=approval_id, patient=patient, status=InsuranceApproval.STATUS_APPROVED,
    ).first()
    if approval is None:
        raise ValidationError({'insurance_approval_id': ['No approved insurance approval with this id.']})
    return approval


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def doctor_queue(request):
    """Visits confirmed to the doctor that are not finished yet (``?all=1`` includes finished ones today)."""
    user: User = request.user  # type: ignore[assignment]
    visits = _own(PatientVisit.objects.select_related('patient', 'doctor'), user)
    if request.query_params.get('all') in ('1', 'true'):
        visits = visits.filter(visit_date__date=timezone.localdate())
    else:
        visits = visits.filter(status__in=(PatientVisit.STATUS_CONFIRMED, PatientVisit.STATUS_IN_PROGRESS))
    return ok([serialize_visit(v) for v in visits.order_by('confirmed_to_doctor_time', 'id')])


@api_view(['PUT'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def visit_status(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    visit = _own(PatientVisit.objects.all(), user).filter(pk=pk).first()
    if visit is None:
        raise NotFound('Visit not found')
    s = VisitStatusSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    visit = update_visit_status(user, visit, s.validated_data['status'])
    visit = PatientVisit.objects.select_related('patient', 'doctor').get(pk=visit.pk)
    return ok(serialize_visit(visit), message='Visit updated')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def sessions(request):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        q = ListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = _own(ClinicalSession.objects.select_related('patient'), user)
        if q.validated_data.get('status'):
            qs = qs.filter(status=q.validated_data['status'])
        patient_id = request.query_params.get('patient_id')
        if patient_id and patient_id.isdigit():
            qs = qs.filter(patient_id=int(patient_id))
        return paginated(qs.order_by('-date', '-id'), serialize_session,
                         page=q.validated_data['page'], limit=q.validated_data['limit'])

    s = SessionCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    patient = visible_patients(user).filter(pk=vd.pop('patient_id')).first()
    if patient is None:
        raise NotFound('Patient not found')

    visit = None
    visit_id = vd.pop('visit_id', None)
    if visit_id:
        visit = _own(PatientVisit.objects.all(), user).filter(pk=visit_id, patient=patient).first()
        if visit is None:
            raise ValidationError({'visit_id': ['Visit not found for this patient.']})
    doctor = visit.doctor if visit else user
    if doctor.role != User.ROLE_DOCTOR:
        raise ValidationError({'visit_id': ['A visit is required to pick the doctor.']})

    appointment = None
    appointment_id = vd.pop('appointment_id', None)
    if appointment_id:
        appointment = Appointment.objects.filter(pk=appointment_id, patient=patient).first()
        if appointment is None:
            raise ValidationError({'appointment_id': ['Appointment not found for this patient.']})
    approval = _approved_approval(patient, vd.pop('insurance_approval_id', None))

    session = ClinicalSession.objects.create(
        center_id=patient.center_id,
        doctor=doctor,
        patient=patient,
        visit=visit,
        appointment=appointment,
        insurance_approval=approval,
        date=vd.pop('date', None) or timezone.now(),
        **vd,
    )
    if visit is not None and visit.status == PatientVisit.STATUS_CONFIRMED:
        update_visit_status(user, visit, PatientVisit.STATUS_IN_PROGRESS)
    log_action(user=user, action='session_create', entity_type='clinical_session', entity_id=session.id,
               detail={'patient_id': patient.id}, request=request)
    return ok(serialize_session(session), message='Session created', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def session_detail(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    session = _own(ClinicalSession.objects.select_related('patient'), user).filter(pk=pk).first()
    if session is None:
        raise NotFound('Session not found')
    if request.method == 'GET':
        data = serialize_session(session)
        data['validation'] = validate_session_data(_session_payload(session), center_id=session.center_id)
        return ok(data)

    if session.status in ('completed', 'cancelled'):
        raise Conflict(f'Session is {session.status} and can no longer be edited.')
    s = SessionUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    new_status = vd.pop('status', None)
    if 'insurance_approval_id' in vd:
        session.insurance_approval = _approved_approval(session.patient, vd.pop('insurance_approval_id'))
    for field, value in vd.items():
        setattr(session, field, value)

    if new_status == 'completed':
        result = validate_session_data(_session_payload(session), center_id=session.center_id)
        if not result['isValid']:
            return fail('Session data is incomplete', code='incomplete_session', validation=result)
    if new_status:
        session.status = new_status
    session.save()
    log_action(user=user, action='session_update', entity_type='clinical_session', entity_id=session.id,
               detail={'status': session.status}, request=request)
    if new_status == 'completed':
        realtime.broadcast(session.center_id, 'session.completed', {'sessionId': session.id})
    return ok(serialize_session(session), message='Session updated')


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def validate_session(request):
    s = SessionValidateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = dict(s.validated_data)
    if request.user.role == User.ROLE_DOCTOR and not data.get('doctor_id'):
        data['doctor_id'] = request.user.id
    return ok(validate_session_data(data, center_id=request.user.center_id))


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsDoctorRole])
def dashboard_stats(request):
    user: User = request.user  # type: ignore[assignment]
    today = timezone.localdate()
    visits = _own(PatientVisit.objects.all(), user)
    session_counts = _own(ClinicalSession.objects.all(), user).aggregate(
        total=Count('id'),
        today=Count('id', filter=Q(date__date=today)),
        completed=Count('id', filter=Q(status='completed')),
    )
    return ok({
        'date': today.isoformat(),
        'waiting': visits.filter(status=PatientVisit.STATUS_CONFIRMED).count(),
        'in_progress': visits.filter(status=PatientVisit.STATUS_IN_PROGRESS).count(),
        'completed_today': visits.filter(status=PatientVisit.STATUS_COMPLETED, completed_at__date=today).count(),
        'appointments_today': _own(Appointment.objects.filter(date=today), user)
        .exclude(status=Appointment.STATUS_CANCELLED).count(),
        'sessions': session_counts,
    })
