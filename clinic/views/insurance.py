"""Insurance pre-approval review."""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated

from ..models import InsuranceApproval
from ..permissions import IsClinicalStaff, IsSupervisorRole, scope_to_center
from ..responses import ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.insurance import ApprovalDecisionSerializer
from ..services import insurance as insurance_service


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsClinicalStaff])
def approvals(request):
    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = scope_to_center(InsuranceApproval.objects.select_related('patient'), request.user)
    if q.validated_data.get('status'):
        qs = qs.filter(status=q.validated_data['status'])
    patient_id = request.query_params.get('patient_id')
    if patient_id and patient_id.isdigit():
        qs = qs.filter(patient_id=int(patient_id))
    return paginated(qs.order_by('-created_at', '-id'), insurance_service.serialize_approval,
                     page=q.validated_data['page'], limit=q.validated_data['limit'])


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsSupervisorRole])
def approval_decision(request, pk: int):
    if not scope_to_center(InsuranceApproval.objects.filter(pk=pk), request.user).exists():
        raise NotFound('Approval not found')
    s = ApprovalDecisionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    approval = insurance_service.decide(
        request.user, pk,
        decision=s.validated_data['decision'],
        approval_number=s.validated_data.get('approval_number', ''),
        rejection_reason=s.validated_data.get('rejection_reason', ''),
    )
    return ok(insurance_service.serialize_approval(approval), message=f'Approval {approval.status}')
