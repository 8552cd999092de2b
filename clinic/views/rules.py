"""
Business rule administration.

Every write invalidates the engine cache so the next evaluation sees the
change.  Admins attached to a center manage that center's rules and
read global ones; operators without a center manage everything.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..models import BusinessRule, Center, User
from ..permissions import IsAdminRole
from ..responses import ok
from ..serializers.rules import BusinessRuleSerializer, RuleEvaluateSerializer
from ..services.audit import log_action
from ..services.rules import rule_to_dict, rules_engine


def owning_center_id(user: User, requested):
    """Center a rule or workflow is stored under; ``None`` means global."""
    if user.center_id:
        return user.center_id
    if requested and not Center.objects.filter(pk=requested).exists():
        raise ValidationError({'center_id': ['Unknown center.']})
    return requested or None


def visible_to_admin(qs, user: User):
    if user.center_id:
        return qs.filter(Q(center__isnull=True) | Q(center_id=user.center_id))
    return qs


def _serialize(rule: BusinessRule) -> dict:
    data = rule_to_dict(rule)
    data.update(
        is_active=rule.is_active,
        created_by=rule.created_by_id,
        created_at=rule.created_at.isoformat(),
        updated_at=rule.updated_at.isoformat(),
    )
    return data


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def business_rules(request):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        qs = visible_to_admin(BusinessRule.objects.all(), user)
        rule_type = request.query_params.get('rule_type')
        if rule_type:
            qs = qs.filter(rule_type=rule_type)
        if request.query_params.get('active') in ('1', 'true'):
            qs = qs.filter(is_active=True)
        return ok([_serialize(r) for r in qs.order_by('-priority', 'id')])

    s = BusinessRuleSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    center_id = owning_center_id(user, vd.pop('center_id', None))
    rule = BusinessRule.objects.create(center_id=center_id, created_by=user, **vd)
    rules_engine.invalidate()
    log_action(user=user, action='business_rule_create', entity_type='business_rule', entity_id=rule.id,
               detail={'rule_type': rule.rule_type, 'action': rule.action}, request=request)
    return ok(_serialize(rule), message='Rule created', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def business_rule_detail(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    rule = visible_to_admin(BusinessRule.objects.all(), user).filter(pk=pk).first()
    if rule is None:
        raise NotFound('Rule not found')
    if request.method == 'GET':
        return ok(_serialize(rule))
    if user.center_id and rule.center_id != user.center_id:
        raise PermissionDenied('Global rules can only be changed by an operator.')

    if request.method == 'DELETE':
        rule.delete()
        rules_engine.invalidate()
        log_action(user=user, action='business_rule_delete', entity_type='business_rule', entity_id=pk,
                   request=request)
        return ok({'id': pk}, message='Rule deleted')

    s = BusinessRuleSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    if 'center_id' in vd:
        rule.center_id = owning_center_id(user, vd.pop('center_id'))
    for field, value in vd.items():
        setattr(rule, field, value)
    rule.save()
    rules_engine.invalidate()
    log_action(user=user, action='business_rule_update', entity_type='business_rule', entity_id=rule.id,
               detail={'fields': sorted(vd)}, request=request)
    return ok(_serialize(rule), message='Rule updated')


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def evaluate_rules(request):
    """Dry-run the active rules against a caller supplied context.

    Center admins always evaluate their own center; only operators may
    pick one with ``center_id``.
    """
    s = RuleEvaluateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    results = rules_engine.evaluate(
        vd['context'],
        role=vd.get('role') or None,
        center_id=request.user.center_id or vd.get('center_id') or None,
        rule_types=vd.get('rule_types'),
    )
    failed = [r for r in results if not r.passed]
    return ok({
        'results': [r.as_dict() for r in results],
        'canProceed': not any(r.action == BusinessRule.ACTION_BLOCK for r in failed),
        'warnings': [r.message for r in failed if r.action != BusinessRule.ACTION_BLOCK and r.message],
        'errors': [r.message for r in failed if r.action == BusinessRule.ACTION_BLOCK and r.message],
    })
