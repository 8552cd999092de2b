"""
Workflow execution.

A workflow is an ordered list of steps stored as JSON::

    {"type": "notify_role", "config": {"role": "doctor", "title": "..."},
     "condition": {"field": "priority", "equals": "urgent"}}

Each run is recorded as a :class:`~clinic.models.WorkflowExecution`
with per-step results.  String values inside a step's ``config`` may
reference the run context as ``{{key}}`` or ``{{a.b}}``; unknown
placeholders are left untouched.  A failing step marks the execution
failed and raises :class:`WorkflowError`.

Event workflows (``trigger_type == "event"``) are started through
:func:`run_event_workflows`; their failures are logged and never
propagate to the request that emitted the event.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from clinic.models import (
    Appointment,
    PatientVisit,
    QueueItem,
    User,
    Workflow,
    WorkflowExecution,
)
from clinic.services import notifications
from clinic.services.rules import MalformedCondition, check_condition, get_nested_value
from clinic.services.transitions import can_transition
from clinic.services.whatsapp import queue_outbound_message

logger = logging.getLogger(__name__)

EVENTS = ('patient.registered', 'appointment.created', 'visit.confirmed', 'invoice.paid')
PLACEHOLDER = re.compile(r'\{\{\s*([\w.]+)\s*\}\}')

STATUS_TARGETS = {
    'appointment': Appointment,
    'queue_item': QueueItem,
    'patient_visit': PatientVisit,
}


class WorkflowError(Exception):
    """Raised when a workflow cannot start or one of its steps fails."""

    def __init__(self, message: str, execution: Optional[WorkflowExecution] = None):
        super().__init__(message)
        self.execution = execution


def substitute(value: Any, data: dict[str, Any]) -> Any:
    """Replace ``{{key}}`` placeholders in strings nested anywhere inside ``value``."""
    if isinstance(value, str):
        def _sub(match: re.Match) -> str:
            found = get_nested_value(data, match.group(1))
            return match.group(0) if found is None else str(found)
        return PLACEHOLDER.sub(_sub, value)
    if isinstance(value, dict):
        return {k: substitute(v, data) for k, v in value.items()}
    if isinstance(value, list):
        return [substitute(v, data) for v in value]
    return value


class _Run:
    """State shared by the steps of one execution."""

    def __init__(self, workflow: Workflow, execution: WorkflowExecution, context: dict[str, Any],
                 triggered_by: Optional[User], depth: int):
        self.workflow = workflow
        self.execution = execution
        self.context = context
        self.triggered_by = triggered_by
        self.depth = depth

    @property
    def center_id(self) -> Optional[str]:
        return self.workflow.center_id or self.context.get('center_id')


def _send_notification(run: _Run, config: dict[str, Any]) -> dict[str, Any]:
    user_id = config.get('user_id') or run.context.get('user_id')
    if not user_id:
        raise WorkflowError('send_notification needs a user_id')
    users = User.objects.filter(pk=user_id, is_active=True)
    if run.center_id:
        users = users.filter(center_id=run.center_id)
    user = users.first()
    if user is None:
        raise WorkflowError(f'user {user_id} not found')
    n = notifications.create_notification(
        user=user,
        title=config.get('title') or 'Notification',
        message=config.get('message') or 'You have a new notification',
        type=config.get('type') or 'system',
        entity_type=run.execution.entity_type,
        entity_id=run.execution.entity_id or None,
    )
    return {'notification_id': n.id}


def _notify_role(run: _Run, config: dict[str, Any]) -> dict[str, Any]:
    role = config.get('role')
    if not role:
        raise WorkflowError('notify_role needs a role')
    created = notifications.notify_role(
        role,
        run.center_id,
        title=config.get('title') or 'Notification',
        message=config.get('message') or 'You have a new notification',
        type=config.get('type') or 'system',
        entity_type=run.execution.entity_type,
        entity_id=run.execution.entity_id or None,
    )
    return {'notified': len(created)}


def _update_status(run: _Run, config: dict[str, Any]) -> dict[str, Any]:
    entity = config.get('entity') or run.execution.entity_type
    model = STATUS_TARGETS.get(entity)
    if model is None:
        raise WorkflowError(f'cannot update status of {entity!r}')
    new_status = config.get('status')
    allowed = {value for value, _ in model._meta.get_field('status').choices}
    if new_status not in allowed:
        raise WorkflowError(f'invalid status {new_status!r} for {entity}')
    if model is QueueItem and new_status == QueueItem.STATUS_IN_PROGRESS:
        raise WorkflowError('queue items start only through confirm-to-doctor')
    entity_id = config.get('entity_id') or run.execution.entity_id
    if not str(entity_id).isdigit():
        raise WorkflowError(f'{entity} {entity_id!r} not found')
    qs = model.objects.select_for_update().filter(pk=entity_id)
    if run.center_id:
        qs = qs.filter(center_id=run.center_id)
    obj = qs.first()
    if obj is None:
        raise WorkflowError(f'{entity} {entity_id} not found')
    if obj.status == new_status:
        return {'updated': 0, 'status': new_status}
    if not can_transition(entity, obj.status, new_status):
        raise WorkflowError(f'cannot move {entity} {entity_id} from {obj.status} to {new_status}')
    obj.status = new_status
    fields = ['status']
    if new_status == 'completed' and model is not Appointment:
        obj.completed_at = timezone.now()
        fields.append('completed_at')
    obj.save(update_fields=fields)
    return {'updated': 1, 'status': new_status}


def _queue_whatsapp(run: _Run, config: dict[str, Any]) -> dict[str, Any]:
    phone = config.get('phone')
    body = config.get('message')
    if not phone or not body:
        raise WorkflowError('queue_whatsapp needs phone and message')
    if not run.center_id:
        raise WorkflowError('queue_whatsapp needs a center')
    msg = queue_outbound_message(center_id=run.center_id, phone=phone, body=body, sent_by=run.triggered_by)
    return {'message_id': msg.id, 'status': msg.status}


def _trigger_workflow(run: _Run, config: dict[str, Any]) -> dict[str, Any]:
    workflow_id = config.get('workflow_id')
    children = Workflow.objects.filter(pk=workflow_id)
    context = run.context
    if run.center_id:
        children = children.filter(Q(center__isnull=True) | Q(center_id=run.center_id))
        context = {**run.context, 'center_id': run.center_id}
    child = children.first()
    if child is None:
        raise WorkflowError(f'workflow {workflow_id} not found')
    execution = execute_workflow(
        child,
        entity_type=run.execution.entity_type,
        entity_id=run.execution.entity_id,
        context=context,
        triggered_by=run.triggered_by,
        depth=run.depth + 1,
    )
    return {'execution_id': execution.id, 'status': execution.status}


STEP_HANDLERS: dict[str, Callable[[_Run, dict[str, Any]], dict[str, Any]]] = {
    'send_notification': _send_notification,
    'notify_role': _notify_role,
    'update_status': _update_status,
    'queue_whatsapp': _queue_whatsapp,
    'trigger_workflow': _trigger_workflow,
}


def _fail(execution: WorkflowExecution, results: list, message: str) -> None:
    execution.status = 'failed'
    execution.error_message = message
    execution.step_results = results
    execution.completed_at = timezone.now()
    execution.save(update_fields=['status', 'error_message', 'step_results', 'completed_at'])


def execute_workflow(workflow: Workflow, *, entity_type: str = '', entity_id: Any = '',
                     context: Optional[dict[str, Any]] = None, triggered_by: Optional[User] = None,
                     depth: int = 0) -> WorkflowExecution:
    """Run every step of ``workflow`` in order and return the finished execution."""
    if depth > settings.WORKFLOW_MAX_DEPTH:
        raise WorkflowError(f'workflow nesting deeper than {settings.WORKFLOW_MAX_DEPTH}')
    if not workflow.is_active:
        raise WorkflowError('workflow is inactive')

    context = dict(context or {})
    entity_id = '' if entity_id is None else str(entity_id)
    execution = WorkflowExecution.objects.create(
        workflow=workflow,
        entity_type=entity_type,
        entity_id=entity_id,
        status='running',
        triggered_by=triggered_by if getattr(triggered_by, 'pk', None) else None,
    )
    run = _Run(workflow, execution, context, triggered_by, depth)
    data = {**context, 'entity_type': entity_type, 'entity_id': entity_id}
    results: list[dict[str, Any]] = []

    for index, step in enumerate(workflow.steps or []):
        if not isinstance(step, dict):
            results.append({'step': index, 'error': 'step must be an object'})
            _fail(execution, results, f'step {index} is not an object')
            raise WorkflowError(f'step {index} is not an object', execution)
        try:
            if step.get('condition') and not check_condition(step['condition'], data):
                results.append({'step': index, 'skipped': True, 'reason': 'Condition not met'})
                continue
            handler = STEP_HANDLERS.get(step.get('type'))
            if handler is None:
                raise WorkflowError(f"Unknown step type: {step.get('type')}")
            config = substitute(step.get('config') or {}, data)
            if handler is _trigger_workflow:
                # the child records its own execution, keep it on failure
                result = handler(run, config)
            else:
                with transaction.atomic():
                    result = handler(run, config)
        except (WorkflowError, MalformedCondition) as exc:
            results.append({'step': index, 'error': str(exc)})
            _fail(execution, results, str(exc))
            raise WorkflowError(str(exc), execution) from exc
        except Exception as exc:
            logger.exception('Workflow %s step %s crashed', workflow.id, index)
            results.append({'step': index, 'error': str(exc)})
            _fail(execution, results, str(exc))
            raise WorkflowError(str(exc), execution) from exc
        results.append({'step': index, 'type': step.get('type'), 'result': result})
        execution.current_step = index + 1
        execution.step_results = results
        execution.save(update_fields=['current_step', 'step_results'])

    execution.status = 'completed'
    execution.step_results = results
    execution.completed_at = timezone.now()
    execution.save(update_fields=['status', 'step_results', 'completed_at'])
    logger.info('Workflow %s completed (execution %s)', workflow.id, execution.id)
    return execution


def event_workflows(event: str, center_id: Optional[str]):
    qs = Workflow.objects.filter(is_active=True, trigger_type='event').order_by('-priority', 'id')
    for wf in qs:
        if wf.center_id and wf.center_id != center_id:
            continue
        if (wf.trigger_config or {}).get('event') == event:
            yield wf


def run_event_workflows(event: str, *, center_id: Optional[str], entity_type: str, entity_id: Any,
                        context: Optional[dict[str, Any]] = None,
                        triggered_by: Optional[User] = None) -> list[WorkflowExecution]:
    """Run every active workflow listening for ``event``; failures are logged only."""
    executions: list[WorkflowExecution] = []
    ctx = {**(context or {}), 'center_id': center_id, 'event': event}
    for wf in event_workflows(event, center_id):
        try:
            executions.append(execute_workflow(
                wf, entity_type=entity_type, entity_id=entity_id, context=ctx, triggered_by=triggered_by,
            ))
        except WorkflowError as exc:
            logger.warning('Event workflow %s for %s failed: %s', wf.id, event, exc)
            if exc.execution is not None:
                executions.append(exc.execution)
    return executions
