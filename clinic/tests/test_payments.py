from datetime import timedelta

import pytest
from django.utils import timezone

from clinic.models import BusinessRule, ClinicalSession, InsuranceApproval, PatientVisit
from clinic.services import billing
from clinic.services.payments import (
    REASON_FIRST_VISIT,
    REASON_INSURANCE,
    REASON_PAID,
    REASON_UNPAID,
    is_first_visit,
    verify_payment,
)

pytestmark = pytest.mark.django_db


def approve(patient, service_type='therapy'):
    return InsuranceApproval.objects.create(
        center_id=patient.center_id, patient=patient, insurance_provider='Bupa', service_type=service_type,
        requested_amount=300, status=InsuranceApproval.STATUS_APPROVED,
    )


def block_rule(message, condition, required=None, **extra):
    if required is not None:
        condition = dict(condition, required_fields=required)
    return BusinessRule.objects.create(
        name=message, rule_type=extra.pop('rule_type', 'payment_required'), condition=condition,
        action=extra.pop('action', 'block'), applies_to=extra.pop('applies_to', ['all']),
        error_message=message, **extra,
    )


def test_first_consultation_is_free(patient):
    result = verify_payment(patient, session_type='consultation')
    assert result.can_proceed
    assert result.reason == REASON_FIRST_VISIT
    assert result.as_dict()['paymentStatus'] is None


def test_first_visit_ends_with_a_session_or_live_visit(patient, doctor):
    assert is_first_visit(patient)
    PatientVisit.objects.create(center_id=patient.center_id, patient=patient, doctor=doctor,
                                visit_date=timezone.now(), status=PatientVisit.STATUS_CANCELLED)
    assert is_first_visit(patient)
    ClinicalSession.objects.create(center_id=patient.center_id, patient=patient, doctor=doctor,
                                   date=timezone.now(), session_type='consultation')
    assert not is_first_visit(patient)


def test_first_visit_for_other_session_types_is_not_free(patient):
    billing.create_invoice(patient=patient, items=[{'description': 'Therapy', 'unit_price': 200}])
    result = verify_payment(patient, session_type='therapy')
    assert not result.can_proceed
    assert result.reason == REASON_UNPAID


def test_returning_patient_with_nothing_outstanding_proceeds(patient, returning):
    returning(patient)
    result = verify_payment(patient, session_type='consultation')
    assert result.can_proceed
    assert result.reason == REASON_PAID
    assert result.payment_status()['paid'] is True


def test_unpaid_invoice_blocks(patient, returning):
    returning(patient)
    invoice = billing.create_invoice(patient=patient, items=[{'description': 'Follow-up', 'unit_price': 100}])
    result = verify_payment(patient, session_type='consultation')
    assert not result.can_proceed
    assert result.required_actions == ['payment', 'insurance_approval']
    status = result.as_dict()['paymentStatus']
    assert status == {
        'paid': False,
        'amount': 115.0,
        'invoiceId': invoice.id,
        'insuranceApproved': False,
        'insuranceApprovalId': None,
    }


def test_overdue_invoice_counts_as_unpaid(patient, returning):
    returning(patient)
    billing.create_invoice(patient=patient, items=[{'description': 'X-ray', 'unit_price': 50}],
                           due_date=timezone.now() - timedelta(days=1))
    billing.refresh_overdue()
    assert not verify_payment(patient).can_proceed


def test_approved_insurance_covers_unpaid_invoice(patient, returning):
    returning(patient)
    billing.create_invoice(patient=patient, items=[{'description': 'Therapy', 'unit_price': 300}])
    approval = approve(patient)
    result = verify_payment(patient, session_type='therapy')
    assert result.can_proceed
    assert result.reason == REASON_INSURANCE
    assert result.payment_status()['insuranceApprovalId'] == approval.id


def test_paid_invoice_lets_patient_through(patient, returning):
    returning(patient)
    invoice = billing.create_invoice(patient=patient, items=[{'description': 'Therapy', 'unit_price': 300}])
    billing.mark_paid(invoice.id)
    assert verify_payment(patient, session_type='therapy').can_proceed


def test_block_rule_supplies_reason_and_required_actions(patient, returning):
    returning(patient)
    block_rule('National ID is required', {'field': 'documents.national_id', 'equals': True},
               required=['national_id'])
    result = verify_payment(patient, session_type='therapy')
    assert not result.can_proceed
    assert result.reason == 'National ID is required'
    assert result.required_actions == ['national_id']


def test_block_rule_applies_to_first_visits_beyond_consultation(patient):
    block_rule('National ID is required', {'field': 'patient.has_national_id', 'equals': True})
    assert not verify_payment(patient, session_type='therapy').can_proceed
    # the free first consultation is decided before any rule runs
    assert verify_payment(patient, session_type='consultation').can_proceed


def test_warn_rules_become_warnings(patient, returning):
    returning(patient)
    block_rule('Check the insurance card', {'field': 'documents.insurance_card', 'equals': True},
               action='warn')
    block_rule('Needs supervisor sign-off', {'field': 'insurance.approved', 'equals': True},
               action='require_approval', rule_type='insurance_approval_required')
    result = verify_payment(patient, session_type='therapy')
    assert result.can_proceed
    assert result.warnings == ['Check the insurance card', 'Needs supervisor sign-off']


def test_rules_for_other_roles_are_ignored(patient, returning):
    returning(patient)
    block_rule('Doctor only', {'field': 'payment.paid', 'equals': False}, applies_to=['doctor'])
    assert verify_payment(patient, session_type='therapy', role='reception').can_proceed
    assert not verify_payment(patient, session_type='therapy', role='doctor').can_proceed


def test_non_gating_rule_types_are_ignored(patient, returning):
    returning(patient)
    block_rule('Notes missing', {'field': 'session.notes', 'exists': True}, rule_type='session_data_complete')
    block_rule('Template mismatch', {'field': 'session.template', 'exists': True},
               rule_type='insurance_template_match')
    block_rule('Known error', {'field': 'session.type', 'exists': False}, rule_type='error_pattern_avoid')
    assert verify_payment(patient, session_type='therapy').can_proceed


def test_rules_of_another_center_are_ignored(patient, returning, other_center):
    returning(patient)
    block_rule('Jeddah only', {'field': 'payment.paid', 'equals': False}, center=other_center)
    assert verify_payment(patient, session_type='therapy').can_proceed
