"""
Payment and insurance verification.

Before reception hands a patient over to a doctor the system checks, in
order: first free consultation, outstanding invoices, approved
insurance, then the admin-configured business rules.  The result is
shaped for the dashboards (camelCase keys) by :meth:`VerificationResult.as_dict`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from django.utils import timezone

from clinic.models import (
    ClinicalSession,
    InsuranceApproval,
    Invoice,
    Patient,
    PatientVisit,
)
from clinic.services.rules import rules_engine

logger = logging.getLogger(__name__)

REASON_FIRST_VISIT = 'First visit consultation is free'
REASON_PAID = 'Payment received'
REASON_INSURANCE = 'Insurance approval on file'
REASON_UNPAID = 'Payment or insurance approval is required'
REASON_BLOCKED = 'Cannot proceed'

GATING_RULE_TYPES = (
    'payment_required',
    'insurance_approval_required',
    'first_visit_free',
)


@dataclass
class PaymentStatus:
    paid: bool
    amount: Decimal = Decimal('0')
    invoice_id: Optional[int] = None


@dataclass
class InsuranceStatus:
    approved: bool
    approval_id: Optional[int] = None


@dataclass
class VerificationResult:
    can_proceed: bool
    reason: str
    required_actions: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    payment: Optional[PaymentStatus] = None
    insurance: Optional[InsuranceStatus] = None

    def payment_status(self) -> Optional[dict[str, Any]]:
        if self.payment is None:
            return None
        insurance = self.insurance or InsuranceStatus(False)
        return {
            'paid': self.payment.paid,
            'amount': float(self.payment.amount),
            'invoiceId': self.payment.invoice_id,
            'insuranceApproved': insurance.approved,
            'insuranceApprovalId': insurance.approval_id,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            'canProceed': self.can_proceed,
            'reason': self.reason,
            'requiredActions': self.required_actions,
            'warnings': self.warnings,
            'paymentStatus': self.payment_status(),
        }


def is_first_visit(patient: Patient) -> bool:
    """A patient with no clinical session and no live visit is on their first visit."""
    if ClinicalSession.objects.filter(patient=patient).exists():
        return False
    return not PatientVisit.objects.filter(patient=patient).exclude(
        status=PatientVisit.STATUS_CANCELLED
    ).exists()


def get_payment_status(patient: Patient) -> PaymentStatus:
    unpaid = (
        Invoice.objects.filter(patient=patient, status__in=Invoice.UNPAID_STATUSES)
        .order_by('-created_at', '-id')
        .first()
    )
    if unpaid is None:
        return PaymentStatus(paid=True)
    return PaymentStatus(paid=False, amount=unpaid.total, invoice_id=unpaid.id)


def get_insurance_status(patient: Patient) -> InsuranceStatus:
    approval = (
        InsuranceApproval.objects.filter(patient=patient, status=InsuranceApproval.STATUS_APPROVED)
        .order_by('-created_at', '-id')
        .first()
    )
    if approval is None:
        return InsuranceStatus(approved=False)
    return InsuranceStatus(approved=True, approval_id=approval.id)


def has_active_policy(patient: Patient) -> bool:
    today = timezone.localdate()
    for policy in patient.policies.filter(is_active=True):
        if policy.coverage_end_date and policy.coverage_end_date < today:
            continue
        return True
    return False


def build_context(patient: Patient, *, first_visit: bool, session_type: str, service_type: Optional[str],
                  payment: PaymentStatus, insurance: InsuranceStatus) -> dict[str, Any]:
    active_policy = has_active_policy(patient)
    return {
        'patient': {
            'id': patient.id,
            'is_first_visit': first_visit,
            'has_national_id': bool(patient.national_id),
            'has_active_policy': active_policy,
        },
        'session': {'type': session_type, 'service_type': service_type},
        'payment': {
            'paid': payment.paid,
            'amount': float(payment.amount),
            'invoice_id': payment.invoice_id,
        },
        'insurance': {'approved': insurance.approved, 'approval_id': insurance.approval_id},
        'documents': {'national_id': bool(patient.national_id), 'insurance_card': active_policy},
    }


def verify_payment(patient: Patient, session_type: str = 'consultation', service_type: Optional[str] = None,
                   role: str = 'reception') -> VerificationResult:
    """Decide whether ``patient`` may be seen by a doctor now.

    A free first consultation returns before payment and insurance are
    looked up, so its ``paymentStatus`` is ``None``.
    """
    first_visit = is_first_visit(patient)
    if first_visit and session_type == 'consultation':
        return VerificationResult(can_proceed=True, reason=REASON_FIRST_VISIT)

    payment = get_payment_status(patient)
    insurance = get_insurance_status(patient)
    context = build_context(
        patient,
        first_visit=first_visit,
        session_type=session_type,
        service_type=service_type,
        payment=payment,
        insurance=insurance,
    )
    results = rules_engine.evaluate(context, role=role, center_id=patient.center_id, rule_types=GATING_RULE_TYPES)

    warnings = [
        r.message for r in results
        if not r.passed and r.action in ('warn', 'require_approval') and r.message
    ]
    blocking = next((r for r in results if not r.passed and r.action == 'block'), None)
    if blocking is not None:
        logger.info('Payment verification blocked patient %s by rule %s', patient.id, blocking.rule_id)
        return VerificationResult(
            can_proceed=False,
            reason=blocking.message or REASON_BLOCKED,
            required_actions=blocking.required_fields,
            warnings=warnings,
            payment=payment,
            insurance=insurance,
        )

    if not payment.paid and not insurance.approved:
        return VerificationResult(
            can_proceed=False,
            reason=REASON_UNPAID,
            required_actions=['payment', 'insurance_approval'],
            warnings=warnings,
            payment=payment,
            insurance=insurance,
        )

    return VerificationResult(
        can_proceed=True,
        reason=REASON_PAID if payment.paid else REASON_INSURANCE,
        warnings=warnings,
        payment=payment,
        insurance=insurance,
    )
