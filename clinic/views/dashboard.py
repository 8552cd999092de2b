"""
Administrator dashboard.

Aggregates for the admin home page: head counts, today's activity and
the billing summary of the last 30 days.  All numbers are restricted to
the admin's center when they have one.
"""
from __future__ import annotations

from datetime import timedelta

from django.db.models import Count, Q
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated

from ..models import (
    Appointment,
    BusinessRule,
    InsuranceApproval,
    Invoice,
    Patient,
    PatientVisit,
    QueueItem,
    User,
    WorkflowExecution,
)
from ..permissions import IsAdminRole, scope_to_center
from ..responses import ok
from ..services import billing as billing_service


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def admin_dashboard(request):
    user: User = request.user  # type: ignore[assignment]
    today = timezone.localdate()
    month_ago = timezone.now() - timedelta(days=30)

    users_by_role = dict(
        scope_to_center(User.objects.filter(is_active=True), user)
        .order_by().values_list('role').annotate(n=Count('id'))
    )
    executions = WorkflowExecution.objects.filter(started_at__gte=month_ago)
    if user.center_id:
        executions = executions.filter(Q(workflow__center__isnull=True) | Q(workflow__center_id=user.center_id))

    return ok({
        'date': today.isoformat(),
        'users': users_by_role,
        'patients': {
            'total': scope_to_center(Patient.objects.filter(status=Patient.STATUS_ACTIVE), user).count(),
            'new_this_month': scope_to_center(Patient.objects.filter(created_at__gte=month_ago), user).count(),
        },
        'today': {
            'appointments': scope_to_center(Appointment.objects.filter(date=today), user)
            .exclude(status=Appointment.STATUS_CANCELLED).count(),
            'queue': scope_to_center(QueueItem.objects.filter(queue_date=today), user).count(),
            'visits': scope_to_center(PatientVisit.objects.filter(visit_date__date=today), user).count(),
        },
        'billing': billing_service.summarize(scope_to_center(Invoice.objects.all(), user), since=month_ago),
        'pending_insurance_approvals': scope_to_center(
            InsuranceApproval.objects.filter(status=InsuranceApproval.STATUS_PENDING), user
        ).count(),
        'active_rules': BusinessRule.objects.filter(is_active=True).count(),
        'workflow_executions': dict(executions.order_by().values_list('status').annotate(n=Count('id'))),
    })
