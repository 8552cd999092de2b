"""
Reception desk endpoints: the daily queue, the hand-off to a doctor,
payment verification and insurance pre-approval requests.
"""
from __future__ import annotations

from django.db.models import Count
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..models import Appointment, InsuranceApproval, Invoice, Patient, PatientVisit, QueueItem, User
from ..permissions import IsReceptionRole, scope_to_center
from ..responses import fail, ok
from ..serializers.insurance import ApprovalCheckSerializer, ApprovalRequestSerializer
from ..serializers.reception import (
    ConfirmToDoctorSerializer,
    PaymentVerifySerializer,
    QueueAddSerializer,
    QueueListQuerySerializer,
    QueueUpdateSerializer,
)
from ..services import insurance as insurance_service
from ..services import reception as reception_service
from ..services.payments import verify_payment
from .patients import serialize_visit


def _patient_in_center(user: User, patient_id: int) -> Patient:
    patient = scope_to_center(Patient.objects.filter(status=Patient.STATUS_ACTIVE), user).filter(pk=patient_id).first()
    if patient is None:
        raise NotFound('Patient not found')
    return patient


def _doctor_in_center(center_id, doctor_id):
    if not doctor_id:
        return None
    doctor = User.objects.filter(pk=doctor_id, role=User.ROLE_DOCTOR, is_active=True, center_id=center_id).first()
    if doctor is None:
        raise ValidationError({'doctor_id': ['Doctor not found in this center.']})
    return doctor


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def queue(request):
    """List today's queue (or ``?date=``) or check a patient in."""
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        q = QueueListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        day = q.validated_data.get('date') or timezone.localdate()
        items = scope_to_center(QueueItem.objects.select_related('patient', 'doctor'), user).filter(queue_date=day)
        statuses = [s for s in (q.validated_data.get('status') or '').split(',') if s]
        if statuses:
            items = items.filter(status__in=statuses)
        # urgent first, then by number
        ordered = sorted(items, key=lambda i: ({'urgent': 0, 'high': 1}.get(i.priority, 2), i.queue_number))
        counts = dict(
            scope_to_center(QueueItem.objects.filter(queue_date=day), user)
            .order_by().values_list('status').annotate(n=Count('id'))
        )
        return ok([reception_service.serialize_queue_item(i) for i in ordered],
                  date=day.isoformat(), counts=counts)

    s = QueueAddSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = _patient_in_center(user, vd['patient_id'])
    appointment = None
    if vd.get('appointment_id'):
        appointment = Appointment.objects.filter(pk=vd['appointment_id'], patient=patient).first()
        if appointment is None:
            raise ValidationError({'appointment_id': ['Appointment not found for this patient.']})
    doctor = _doctor_in_center(patient.center_id, vd.get('doctor_id') or (appointment.doctor_id if appointment else None))
    item = reception_service.add_to_queue(
        user, patient=patient, appointment=appointment, doctor=doctor,
        priority=vd['priority'], service_type=vd.get('service_type', ''), notes=vd.get('notes', ''),
    )
    return ok(reception_service.serialize_queue_item(item), message=f'Queue number {item.queue_number}',
              status=status.HTTP_201_CREATED)


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def queue_item(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'DELETE':
        item = reception_service.update_queue_item(user, pk, status=QueueItem.STATUS_CANCELLED)
        return ok(reception_service.serialize_queue_item(item), message='Removed from queue')

    s = QueueUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    doctor = None
    if vd.get('doctor_id'):
        doctor = User.objects.filter(pk=vd['doctor_id'], role=User.ROLE_DOCTOR, is_active=True).first()
        if doctor is None:
            raise ValidationError({'doctor_id': ['Doctor not found.']})
    item = reception_service.update_queue_item(
        user, pk, status=vd.get('status'), priority=vd.get('priority'), notes=vd.get('notes'), doctor=doctor,
    )
    return ok(reception_service.serialize_queue_item(item), message='Queue item updated')


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def confirm_to_doctor(request, pk: int):
    """Hand a queued patient over to a doctor after payment verification.

    A refused verification answers ``403`` with ``requiredActions`` and
    ``paymentStatus`` next to the error so the desk can collect payment
    or request an insurance approval.
    """
    s = ConfirmToDoctorSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    try:
        visit, result = reception_service.confirm_to_doctor(
            request.user, pk, doctor_id=s.validated_data['doctor_id'], notes=s.validated_data.get('notes', ''),
        )
    except reception_service.VerificationFailed as exc:
        return fail(
            exc.result.reason,
            status=status.HTTP_403_FORBIDDEN,
            code='payment_required',
            requiredActions=exc.result.required_actions,
            paymentStatus=exc.result.payment_status(),
            warnings=exc.result.warnings,
        )
    item = QueueItem.objects.select_related('patient', 'doctor').get(pk=visit.queue_item_id)
    return ok(
        {
            'visit': serialize_visit(visit),
            'queueItem': reception_service.serialize_queue_item(item),
            'paymentVerification': result.as_dict(),
        },
        message='Patient confirmed to doctor',
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def payment_verify(request):
    s = PaymentVerifySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    patient = _patient_in_center(request.user, s.validated_data['patient_id'])
    result = verify_payment(
        patient,
        session_type=s.validated_data['session_type'],
        service_type=s.validated_data.get('service_type') or None,
        role='reception',
    )
    return ok(result.as_dict())


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def request_insurance_approval(request):
    s = ApprovalRequestSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    patient = _patient_in_center(request.user, vd['patient_id'])
    provider = vd.get('insurance_provider')
    if not provider:
        policy = patient.policies.filter(is_active=True).order_by('-id').first()
        if policy is None:
            raise ValidationError({'insurance_provider': ['Patient has no active insurance policy.']})
        provider = policy.provider
    visit = None
    if vd.get('visit_id'):
        visit = PatientVisit.objects.filter(pk=vd['visit_id'], patient=patient).first()
        if visit is None:
            raise ValidationError({'visit_id': ['Visit not found for this patient.']})
    approval = insurance_service.request_approval(
        request.user, patient=patient, insurance_provider=provider, service_type=vd['service_type'],
        requested_amount=vd['requested_amount'], visit=visit, notes=vd.get('notes', ''),
    )
    return ok(insurance_service.serialize_approval(approval), message='Approval requested',
              status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def check_insurance_approval(request):
    s = ApprovalCheckSerializer(data=request.query_params)
    s.is_valid(raise_exception=True)
    patient = _patient_in_center(request.user, s.validated_data['patient_id'])
    approval = insurance_service.latest_approval(patient, s.validated_data.get('service_type') or None)
    return ok({
        'approved': bool(approval and approval.status == InsuranceApproval.STATUS_APPROVED),
        'status': approval.status if approval else None,
        'approval': insurance_service.serialize_approval(approval) if approval else None,
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsReceptionRole])
def dashboard_stats(request):
    user: User = request.user  # type: ignore[assignment]
    today = timezone.localdate()
    queue_today = scope_to_center(QueueItem.objects.filter(queue_date=today), user)
    return ok({
        'date': today.isoformat(),
        'queue': {
            'total': queue_today.count(),
            'waiting': queue_today.filter(status__in=(QueueItem.STATUS_CHECKED_IN, QueueItem.STATUS_WAITING)).count(),
            'in_progress': queue_today.filter(status=QueueItem.STATUS_IN_PROGRESS).count(),
            'completed': queue_today.filter(status=QueueItem.STATUS_COMPLETED).count(),
        },
        'appointments_today': scope_to_center(Appointment.objects.filter(date=today), user)
        .exclude(status=Appointment.STATUS_CANCELLED).count(),
        'patients_registered_today': scope_to_center(Patient.objects.filter(created_at__date=today), user).count(),
        'pending_invoices': scope_to_center(Invoice.objects.filter(status__in=Invoice.UNPAID_STATUSES), user).count(),
        'pending_approvals': scope_to_center(
            InsuranceApproval.objects.filter(status=InsuranceApproval.STATUS_PENDING), user
        ).count(),
    })
