"""Insurance pre-approval requests and decisions."""
from __future__ import annotations

from typing import Optional

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from clinic.exceptions import Conflict
from clinic.models import InsuranceApproval
from clinic.services import notifications
from clinic.services.audit import log_action


def serialize_approval(a: InsuranceApproval) -> dict:
    return {
        'id': a.id,
        'center_id': a.center_id,
        'patient_id': a.patient_id,
        'patient_name': a.patient.name,
        'visit_id': a.visit_id,
        'insurance_provider': a.insurance_provider,
        'service_type': a.service_type,
        'requested_amount': float(a.requested_amount),
        'status': a.status,
        'approval_number': a.approval_number,
        'approval_date': a.approval_date.isoformat() if a.approval_date else None,
        'rejection_reason': a.rejection_reason,
        'notes': a.notes,
        'requested_by': a.requested_by_id,
        'decided_by': a.decided_by_id,
        'created_at': a.created_at.isoformat(),
    }


def request_approval(user, *, patient, insurance_provider: str, service_type: str, requested_amount,
                     visit=None, notes: str = '') -> InsuranceApproval:
    open_requests = InsuranceApproval.objects.filter(
        patient=patient,
        service_type=service_type,
        status__in=(InsuranceApproval.STATUS_PENDING, InsuranceApproval.STATUS_APPROVED),
    )
    if open_requests.exists():
        raise Conflict('An approval for this service is already pending or approved.')
    approval = InsuranceApproval.objects.create(
        center_id=patient.center_id,
        patient=patient,
        visit=visit,
        insurance_provider=insurance_provider,
        service_type=service_type,
        requested_amount=requested_amount,
        notes=notes,
        requested_by=user,
    )
    log_action(user=user, action='insurance_request', entity_type='insurance_approval', entity_id=approval.id,
               detail={'patient_id': patient.id, 'service_type': service_type})
    return approval


def latest_approval(patient, service_type: Optional[str] = None) -> Optional[InsuranceApproval]:
    qs = InsuranceApproval.objects.filter(patient=patient)
    if service_type:
        qs = qs.filter(service_type=service_type)
    return qs.order_by('-created_at', '-id').first()


def decide(user, approval_id: int, *, decision: str, approval_number: str = '',
           rejection_reason: str = '') -> InsuranceApproval:
    if decision not in (InsuranceApproval.STATUS_APPROVED, InsuranceApproval.STATUS_REJECTED):
        raise ValidationError({'decision': ['Must be approved or rejected.']})
    if decision == InsuranceApproval.STATUS_REJECTED and not rejection_reason:
        raise ValidationError({'rejection_reason': ['A reason is required when rejecting.']})
    with transaction.atomic():
        approval = InsuranceApproval.objects.select_for_update().get(pk=approval_id)
        if approval.status != InsuranceApproval.STATUS_PENDING:
            raise Conflict(f'Approval is already {approval.status}.')
        approval.status = decision
        approval.decided_by = user
        approval.approval_date = timezone.now()
        approval.approval_number = approval_number
        approval.rejection_reason = rejection_reason
        approval.save()
    log_action(user=user, action='insurance_decision', entity_type='insurance_approval', entity_id=approval.id,
               detail={'decision': decision})
    if approval.requested_by_id:
        notifications.notify(
            approval.requested_by, 'insurance_decision',
            {'patient_name': approval.patient.name, 'status': decision},
            patient=approval.patient, entity_type='insurance_approval', entity_id=approval.id,
        )
    return approval
