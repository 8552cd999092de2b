"""
Patient registry endpoints.

Reception registers and edits patients; doctors, staff and supervisors
read them.  Doctors only see patients handed to them by reception or
booked with them, and patient/guardian accounts only their own records
(see :func:`clinic.services.patients.visible_patients`).  Deleting a
patient deactivates the record.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated

from ..models import InsurancePolicy, Patient, PatientVisit
from ..permissions import permission_required
from ..responses import ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.patients import InsurancePolicySerializer, PatientCreateSerializer, PatientUpdateSerializer
from ..services import notifications
from ..services.audit import log_action
from ..services.patients import create_patient, visible_patients
from ..services.workflows import run_event_workflows


def _serialize(p: Patient) -> dict:
    return {
        'id': p.id,
        'center_id': p.center_id,
        'name': p.name,
        'phone': p.phone,
        'email': p.email,
        'nationality': p.nationality,
        'national_id': p.national_id,
        'date_of_birth': p.date_of_birth.isoformat() if p.date_of_birth else None,
        'gender': p.gender,
        'status': p.status,
        'notes': p.notes,
        'guardian_id': p.guardian_id,
        'created_at': p.created_at.isoformat(),
        'updated_at': p.updated_at.isoformat(),
    }


def _serialize_policy(pol: InsurancePolicy) -> dict:
    return {
        'id': pol.id,
        'patient_id': pol.patient_id,
        'provider': pol.provider,
        'policy_number': pol.policy_number,
        'policy_holder_name': pol.policy_holder_name,
        'coverage_type': pol.coverage_type,
        'coverage_start_date': pol.coverage_start_date.isoformat() if pol.coverage_start_date else None,
        'coverage_end_date': pol.coverage_end_date.isoformat() if pol.coverage_end_date else None,
        'is_active': pol.is_active,
        'verification_status': pol.verification_status,
    }


def serialize_visit(v: PatientVisit) -> dict:
    return {
        'id': v.id,
        'center_id': v.center_id,
        'patient_id': v.patient_id,
        'patient_name': v.patient.name,
        'doctor_id': v.doctor_id,
        'doctor_name': v.doctor.display_name,
        'appointment_id': v.appointment_id,
        'queue_item_id': v.queue_item_id,
        'status': v.status,
        'visit_date': v.visit_date.isoformat(),
        'check_in_time': v.check_in_time.isoformat() if v.check_in_time else None,
        'confirmed_to_doctor_time': v.confirmed_to_doctor_time.isoformat() if v.confirmed_to_doctor_time else None,
        'started_at': v.started_at.isoformat() if v.started_at else None,
        'completed_at': v.completed_at.isoformat() if v.completed_at else None,
        'notes': v.notes,
    }


def get_visible_patient(user, pk) -> Patient:
    patient = visible_patients(user).filter(pk=pk).first()
    if patient is None:
        raise NotFound('Patient not found')
    return patient


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('patients:read', 'patients:create')])
def patients(request):
    if request.method == 'GET':
        q = ListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = visible_patients(request.user)
        st = q.validated_data.get('status') or Patient.STATUS_ACTIVE
        if st != 'all':
            qs = qs.filter(status=st)
        search = q.validated_data.get('search')
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search) | Q(national_id=search))
        return paginated(qs.order_by('-created_at', '-id'), _serialize,
                         page=q.validated_data['page'], limit=q.validated_data['limit'])

    s = PatientCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = create_patient(request.user, **s.validated_data)
    log_action(user=request.user, action='patient_create', entity_type='patient', entity_id=patient.id,
               request=request)
    if request.user.role != 'reception':
        for user in notifications.recipients_for_role('reception', patient.center_id):
            notifications.notify(user, 'patient_registered', {'patient_name': patient.name},
                                 patient=patient, entity_type='patient', entity_id=patient.id)
    run_event_workflows('patient.registered', center_id=patient.center_id, entity_type='patient',
                        entity_id=patient.id, triggered_by=request.user,
                        context={'patient_id': patient.id, 'patient_name': patient.name, 'phone': patient.phone})
    return ok(_serialize(patient), message='Patient registered', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated,
                     permission_required('patients:read', 'patients:update', 'patients:delete')])
def patient_detail(request, pk: int):
    patient = get_visible_patient(request.user, pk)

    if request.method == 'GET':
        data = _serialize(patient)
        data['insurance'] = [_serialize_policy(p) for p in patient.policies.order_by('-is_active', '-id')]
        data['visit_count'] = patient.visits.count()
        data['appointment_count'] = patient.appointments.count()
        return ok(data)

    if request.method == 'DELETE':
        patient.status = Patient.STATUS_INACTIVE
        patient.save(update_fields=['status', 'updated_at'])
        log_action(user=request.user, action='patient_deactivate', entity_type='patient', entity_id=patient.id,
                   request=request)
        return ok(_serialize(patient), message='Patient deactivated')

    s = PatientUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    vd.pop('center_id', None)
    for field, value in vd.items():
        setattr(patient, field, value)
    patient.save()
    log_action(user=request.user, action='patient_update', entity_type='patient', entity_id=patient.id,
               detail={'fields': sorted(vd)}, request=request)
    return ok(_serialize(patient), message='Patient updated')


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('patients:read', 'patients:update')])
def patient_insurance(request, pk: int):
    patient = get_visible_patient(request.user, pk)
    if request.method == 'GET':
        return ok([_serialize_policy(p) for p in patient.policies.order_by('-is_active', '-id')])

    s = InsurancePolicySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    policy = InsurancePolicy.objects.create(patient=patient, **s.validated_data)
    log_action(user=request.user, action='insurance_policy_add', entity_type='patient', entity_id=patient.id,
               detail={'policy_id': policy.id, 'provider': policy.provider}, request=request)
    return ok(_serialize_policy(policy), message='Insurance policy added', status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('patients:read')])
def patient_visits(request, pk: int):
    patient = get_visible_patient(request.user, pk)
    visits = patient.visits.select_related('patient', 'doctor').order_by('-visit_date')
    if getattr(request.user, 'role', None) == 'doctor':
        visits = visits.filter(doctor=request.user)
    return ok([serialize_visit(v) for v in visits])
