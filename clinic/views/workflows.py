"""Workflow administration and manual execution."""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..models import User, Workflow, WorkflowExecution
from ..permissions import IsAdminRole
from ..responses import fail, ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.workflows import WorkflowExecuteSerializer, WorkflowSerializer
from ..services.audit import log_action
from ..services.workflows import WorkflowError, execute_workflow
from .rules import owning_center_id, visible_to_admin


def _serialize(wf: Workflow) -> dict:
    return {
        'id': wf.id,
        'center_id': wf.center_id,
        'name': wf.name,
        'description': wf.description,
        'category': wf.category,
        'trigger_type': wf.trigger_type,
        'trigger_config': wf.trigger_config,
        'steps': wf.steps,
        'is_active': wf.is_active,
        'priority': wf.priority,
        'version': wf.version,
        'created_by': wf.created_by_id,
        'created_at': wf.created_at.isoformat(),
        'updated_at': wf.updated_at.isoformat(),
    }


def serialize_execution(ex: WorkflowExecution) -> dict:
    return {
        'id': ex.id,
        'workflow_id': ex.workflow_id,
        'entity_type': ex.entity_type,
        'entity_id': ex.entity_id,
        'status': ex.status,
        'current_step': ex.current_step,
        'step_results': ex.step_results,
        'error_message': ex.error_message,
        'triggered_by': ex.triggered_by_id,
        'started_at': ex.started_at.isoformat(),
        'completed_at': ex.completed_at.isoformat() if ex.completed_at else None,
    }


def _get_workflow(user: User, pk: int) -> Workflow:
    wf = visible_to_admin(Workflow.objects.all(), user).filter(pk=pk).first()
    if wf is None:
        raise NotFound('Workflow not found')
    return wf


def _check_child_workflows(steps: list, center_id) -> None:
    """A ``trigger_workflow`` step may only start a global workflow or one of the same center."""
    for index, step in enumerate(steps):
        if step.get('type') != 'trigger_workflow':
            continue
        target = (step.get('config') or {}).get('workflow_id')
        qs = Workflow.objects.filter(pk=target) if str(target).isdigit() else Workflow.objects.none()
        if center_id:
            qs = qs.filter(Q(center__isnull=True) | Q(center_id=center_id))
        if not qs.exists():
            raise ValidationError({'steps': [f'Step {index}: workflow {target} not found.']})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def workflows(request):
    user: User = request.user  # type: ignore[assignment]
    if request.method == 'GET':
        qs = visible_to_admin(Workflow.objects.all(), user)
        for param in ('category', 'trigger_type'):
            if request.query_params.get(param):
                qs = qs.filter(**{param: request.query_params[param]})
        return ok([_serialize(wf) for wf in qs.order_by('-priority', 'id')])

    s = WorkflowSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    center_id = owning_center_id(user, vd.pop('center_id', None))
    vd['steps'] = [dict(step) for step in vd.get('steps', [])]
    _check_child_workflows(vd['steps'], center_id)
    wf = Workflow.objects.create(center_id=center_id, created_by=user, **vd)
    log_action(user=user, action='workflow_create', entity_type='workflow', entity_id=wf.id, request=request)
    return ok(_serialize(wf), message='Workflow created', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def workflow_detail(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    wf = _get_workflow(user, pk)
    if request.method == 'GET':
        return ok(_serialize(wf))
    if user.center_id and wf.center_id != user.center_id:
        raise PermissionDenied('Global workflows can only be changed by an operator.')

    if request.method == 'DELETE':
        wf.delete()
        log_action(user=user, action='workflow_delete', entity_type='workflow', entity_id=pk, request=request)
        return ok({'id': pk}, message='Workflow deleted')

    s = WorkflowSerializer(wf, data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    if 'center_id' in vd:
        wf.center_id = owning_center_id(user, vd.pop('center_id'))
    if 'steps' in vd:
        vd['steps'] = [dict(step) for step in vd['steps']]
        _check_child_workflows(vd['steps'], wf.center_id)
        wf.version += 1
    for field, value in vd.items():
        setattr(wf, field, value)
    wf.save()
    log_action(user=user, action='workflow_update', entity_type='workflow', entity_id=wf.id,
               detail={'fields': sorted(vd), 'version': wf.version}, request=request)
    return ok(_serialize(wf), message='Workflow updated')


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def execute(request, pk: int):
    user: User = request.user  # type: ignore[assignment]
    wf = _get_workflow(user, pk)
    s = WorkflowExecuteSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    context = dict(s.validated_data['context'])
    if user.center_id:
        context['center_id'] = user.center_id
    else:
        context.setdefault('center_id', wf.center_id)
    context.setdefault('user_id', user.id)
    try:
        execution = execute_workflow(
            wf,
            entity_type=s.validated_data.get('entity_type', ''),
            entity_id=s.validated_data.get('entity_id', ''),
            context=context,
            triggered_by=user,
        )
    except WorkflowError as exc:
        extra = {'execution': serialize_execution(exc.execution)} if exc.execution else {}
        return fail(str(exc), code='workflow_failed', **extra)
    log_action(user=user, action='workflow_execute', entity_type='workflow', entity_id=wf.id,
               detail={'execution_id': execution.id}, request=request)
    return ok(serialize_execution(execution), message='Workflow executed')


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsAdminRole])
def executions(request, pk: int):
    wf = _get_workflow(request.user, pk)
    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = wf.executions.all()
    if q.validated_data.get('status'):
        qs = qs.filter(status=q.validated_data['status'])
    return paginated(qs.order_by('-started_at', '-id'), serialize_execution,
                     page=q.validated_data['page'], limit=q.validated_data['limit'])
