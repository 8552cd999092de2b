"""
Appointment booking endpoints.

Appointments move ``pending -> confirmed -> completed``; pending or
confirmed appointments may be cancelled.  ``DELETE`` cancels rather than
removing the row.  Patient accounts may only book for their own record.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..exceptions import Conflict
from ..models import Appointment, User
from ..permissions import has_permission, permission_required, scope_to_center
from ..responses import ok, paginated
from ..serializers.appointments import (
    AppointmentCreateSerializer,
    AppointmentListQuerySerializer,
    AppointmentUpdateSerializer,
)
from ..services import notifications, realtime
from ..services.audit import log_action
from ..services.patients import visible_patients
from ..services.transitions import can_transition
from ..services.workflows import run_event_workflows


def serialize_appointment(a: Appointment) -> dict:
    return {
        'id': a.id,
        'center_id': a.center_id,
        'patient_id': a.patient_id,
        'patient_name': a.patient.name,
        'doctor_id': a.doctor_id,
        'doctor_name': a.doctor.display_name if a.doctor_id else None,
        'date': a.date.isoformat(),
        'time': a.time.strftime('%H:%M') if a.time else None,
        'duration': a.duration,
        'appointment_type': a.appointment_type,
        'status': a.status,
        'notes': a.notes,
        'created_at': a.created_at.isoformat(),
    }


def _visible_appointments(user: User):
    qs = Appointment.objects.select_related('patient', 'doctor')
    if user.role == User.ROLE_DOCTOR:
        return qs.filter(doctor=user)
    if user.role in (User.ROLE_PATIENT, User.ROLE_GUARDIAN):
        return qs.filter(patient__in=visible_patients(user))
    return scope_to_center(qs, user)


def _doctor_for(center_id, doctor_id):
    if not doctor_id:
        return None
    doctor = User.objects.filter(pk=doctor_id, role=User.ROLE_DOCTOR, is_active=True, center_id=center_id).first()
    if doctor is None:
        raise ValidationError({'doctor_id': ['Doctor not found in this center.']})
    return doctor


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, permission_required('appointments:read', 'appointments:create')])
def appointments(request):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        q = AppointmentListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        vd = q.validated_data
        qs = _visible_appointments(user)
        if vd.get('status'):
            qs = qs.filter(status=vd['status'])
        if vd.get('date'):
            qs = qs.filter(date=vd['date'])
        if vd.get('date_from'):
            qs = qs.filter(date__gte=vd['date_from'])
        if vd.get('date_to'):
            qs = qs.filter(date__lte=vd['date_to'])
        if vd.get('doctor_id'):
            qs = qs.filter(doctor_id=vd['doctor_id'])
        if vd.get('patient_id'):
            qs = qs.filter(patient_id=vd['patient_id'])
        return paginated(qs.order_by('date', 'time', 'id'), serialize_appointment,
                         page=vd['page'], limit=vd['limit'])

    s = AppointmentCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = visible_patients(user).filter(pk=vd['patient_id'], status='active').first()
    if patient is None:
        if user.role == User.ROLE_PATIENT:
            raise PermissionDenied('Patients may only book their own appointments.')
        raise NotFound('Patient not found')
    doctor = _doctor_for(patient.center_id, vd.get('doctor_id'))
    if doctor and vd.get('time'):
        clash = Appointment.objects.filter(
            doctor=doctor, date=vd['date'], time=vd['time'],
            status__in=(Appointment.STATUS_PENDING, Appointment.STATUS_CONFIRMED),
        )
        if clash.exists():
            raise Conflict('The doctor already has an appointment at this time.')
    appointment = Appointment.objects.create(
        center_id=patient.center_id,
        patient=patient,
        doctor=doctor,
        date=vd['date'],
        time=vd.get('time'),
        duration=vd['duration'],
        appointment_type=vd['appointment_type'],
        notes=vd.get('notes', ''),
        created_by=user,
    )
    log_action(user=user, action='appointment_create', entity_type='appointment', entity_id=appointment.id,
               request=request)
    params = {'patient_name': patient.name, 'date': appointment.date.isoformat(),
              'time': vd['time'].strftime('%H:%M') if vd.get('time') else ''}
    if doctor:
        notifications.notify(doctor, 'appointment_created', params, patient=patient,
                             entity_type='appointment', entity_id=appointment.id)
    if patient.user_id:
        notifications.notify(patient.user, 'appointment_created', params, patient=patient,
                             entity_type='appointment', entity_id=appointment.id)
    realtime.broadcast(appointment.center_id, 'appointment.created', {'appointmentId': appointment.id})
    run_event_workflows('appointment.created', center_id=appointment.center_id, entity_type='appointment',
                        entity_id=appointment.id, triggered_by=user,
                        context={'patient_id': patient.id, 'patient_name': patient.name, 'phone': patient.phone,
                                 'doctor_id': appointment.doctor_id, 'user_id': appointment.doctor_id,
                                 'date': appointment.date.isoformat()})
    return ok(serialize_appointment(appointment), message='Appointment created', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated,
                     permission_required('appointments:read', 'appointments:update', 'appointments:cancel')])
def appointment_detail(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    appointment = _visible_appointments(user).filter(pk=pk).first()
    if appointment is None:
        raise NotFound('Appointment not found')

    if request.method == 'GET':
        return ok(serialize_appointment(appointment))

    if request.method == 'DELETE':
        new_status, fields = Appointment.STATUS_CANCELLED, {}
    else:
        s = AppointmentUpdateSerializer(data=request.data, partial=True)
        s.is_valid(raise_exception=True)
        fields = dict(s.validated_data)
        new_status = fields.pop('status', None)

    if new_status and new_status != appointment.status:
        if new_status == Appointment.STATUS_CANCELLED and not has_permission(user.role, 'appointments:cancel'):
            raise PermissionDenied('Insufficient permissions')
        if not can_transition('appointment', appointment.status, new_status):
            raise Conflict(f'Cannot change appointment status from {appointment.status} to {new_status}.')
        appointment.status = new_status
    if 'doctor_id' in fields:
        appointment.doctor = _doctor_for(appointment.center_id, fields.pop('doctor_id'))
    for field, value in fields.items():
        setattr(appointment, field, value)
    appointment.save()
    log_action(user=user, action='appointment_update', entity_type='appointment', entity_id=appointment.id,
               detail={'status': appointment.status}, request=request)

    if new_status in (Appointment.STATUS_CONFIRMED, Appointment.STATUS_CANCELLED) and appointment.patient.user_id:
        template = 'appointment_confirmed' if new_status == Appointment.STATUS_CONFIRMED else 'appointment_cancelled'
        notifications.notify(appointment.patient.user, template,
                             {'patient_name': appointment.patient.name, 'date': appointment.date.isoformat(),
                              'time': appointment.time.strftime('%H:%M') if appointment.time else ''},
                             patient=appointment.patient, entity_type='appointment', entity_id=appointment.id)
    realtime.broadcast(appointment.center_id, 'appointment.updated',
                       {'appointmentId': appointment.id, 'status': appointment.status})
    message = 'Appointment cancelled' if appointment.status == Appointment.STATUS_CANCELLED else 'Appointment updated'
    return ok(serialize_appointment(appointment), message=message)
