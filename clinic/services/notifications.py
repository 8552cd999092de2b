"""
In-app notifications.

Notifications are plain rows addressed to one user.  Templates keep the
wording of recurring messages in one place; missing template parameters
render as empty strings.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterable, Optional

from django.contrib.auth import get_user_model

from clinic.models import Notification

logger = logging.getLogger(__name__)

User = get_user_model()

TEMPLATES: dict[str, dict[str, str]] = {
    'appointment_created': {
        'type': 'appointment',
        'title': 'New appointment',
        'message': 'A new appointment was booked for {patient_name} on {date}',
    },
    'appointment_confirmed': {
        'type': 'appointment',
        'title': 'Appointment confirmed',
        'message': 'Your appointment on {date} at {time} is confirmed',
    },
    'appointment_cancelled': {
        'type': 'appointment',
        'title': 'Appointment cancelled',
        'message': 'Your appointment on {date} was cancelled',
    },
    'patient_registered': {
        'type': 'patient_registration',
        'title': 'New patient registered',
        'message': '{patient_name} was registered at reception',
    },
    'patient_confirmed_to_doctor': {
        'type': 'doctor_assignment',
        'title': 'Patient waiting',
        'message': '{patient_name} (queue #{queue_number}) is ready for you',
    },
    'payment_received': {
        'type': 'payment',
        'title': 'Payment received',
        'message': 'Payment of {amount} SAR received for invoice {invoice_number}',
    },
    'payment_due': {
        'type': 'invoice',
        'title': 'Invoice due',
        'message': 'Invoice {invoice_number} of {amount} SAR is awaiting payment',
    },
    'insurance_decision': {
        'type': 'insurance',
        'title': 'Insurance approval {status}',
        'message': 'Insurance approval for {patient_name} was {status}',
    },
    'whatsapp_message': {
        'type': 'message',
        'title': 'New WhatsApp message',
        'message': 'New message from {phone}',
    },
}


def render(template: str, params: Optional[dict[str, Any]] = None) -> dict[str, str]:
    tpl = TEMPLATES[template]
    values = defaultdict(str, params or {})
    return {
        'type': tpl['type'],
        'title': tpl['title'].format_map(values),
        'message': tpl['message'].format_map(values),
    }


def create_notification(*, user, title: str, message: str, type: str = 'system', patient=None,
                        entity_type: str = '', entity_id: Any = None) -> Notification:
    return Notification.objects.create(
        user=user,
        patient=patient,
        type=type,
        title=title,
        message=message,
        entity_type=entity_type,
        entity_id='' if entity_id is None else str(entity_id),
    )


def notify(user, template: str, params: Optional[dict[str, Any]] = None, **kwargs) -> Notification:
    """Create a notification for ``user`` from one of :data:`TEMPLATES`."""
    return create_notification(user=user, **render(template, params), **kwargs)


def recipients_for_role(role: str, center_id: Optional[str]) -> Iterable:
    qs = User.objects.filter(role=role, is_active=True)
    if center_id:
        qs = qs.filter(center_id=center_id)
    return qs


def notify_role(role: str, center_id: Optional[str], *, title: str, message: str, type: str = 'system',
                entity_type: str = '', entity_id: Any = None) -> list[Notification]:
    """Create the same notification for every active user with ``role`` in the center."""
    created = [
        create_notification(user=u, title=title, message=message, type=type,
                            entity_type=entity_type, entity_id=entity_id)
        for u in recipients_for_role(role, center_id)
    ]
    logger.debug('notify_role %s@%s -> %d recipients', role, center_id, len(created))
    return created
