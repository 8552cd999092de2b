"""
WhatsApp conversations.

Inbound messages arrive through the Cloud API webhook and are stored
per center and phone number.  Outbound messages are only queued here
(status ``queued``); a separate sender delivers them.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

import bleach
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from clinic.models import Center, Patient, WhatsAppConversation, WhatsAppMessage
from clinic.services import notifications

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r'\D+')

# Cloud API delivery states in the order they can happen
STATUS_ORDER = {'queued': 0, 'sent': 1, 'delivered': 2, 'read': 3}


def normalize_phone(phone: str) -> str:
    return _NON_DIGITS.sub('', phone or '')


def get_or_create_conversation(center_id: str, phone: str, contact_name: str = '') -> WhatsAppConversation:
    phone = normalize_phone(phone)
    if not phone:
        raise ValueError('phone number is required')
    conv, created = WhatsAppConversation.objects.get_or_create(
        center_id=center_id, phone=phone, defaults={'contact_name': contact_name},
    )
    if created:
        patient = (
            Patient.objects.filter(center_id=center_id, phone__endswith=phone[-9:])
            .order_by('-created_at')
            .first()
        )
        if patient is not None:
            conv.patient = patient
            conv.save(update_fields=['patient'])
    elif contact_name and not conv.contact_name:
        conv.contact_name = contact_name
        conv.save(update_fields=['contact_name'])
    return conv


def queue_outbound_message(*, center_id: str, phone: str, body: str, sent_by=None,
                           message_type: str = 'text') -> WhatsAppMessage:
    body = bleach.clean((body or '').strip(), strip=True)
    if not body:
        raise ValueError('message body is required')
    conv = get_or_create_conversation(center_id, phone)
    msg = WhatsAppMessage.objects.create(
        conversation=conv,
        direction='outbound',
        body=body,
        message_type=message_type,
        status='queued',
        sent_by=sent_by if getattr(sent_by, 'pk', None) else None,
    )
    conv.last_message_at = timezone.now()
    conv.save(update_fields=['last_message_at'])
    return msg


def _message_text(message: dict[str, Any]) -> str:
    mtype = message.get('type') or 'text'
    if mtype == 'text':
        return (message.get('text') or {}).get('body', '')
    if mtype in ('image', 'document', 'video', 'audio'):
        return (message.get(mtype) or {}).get('caption', '')
    if mtype == 'button':
        return (message.get('button') or {}).get('text', '')
    return ''


def _store_inbound(center: Center, message: dict[str, Any], contacts: list) -> Optional[WhatsAppMessage]:
    provider_id = message.get('id') or ''
    if provider_id and WhatsAppMessage.objects.filter(provider_message_id=provider_id).exists():
        return None
    name = ''
    for contact in contacts:
        if contact.get('wa_id') == message.get('from'):
            name = (contact.get('profile') or {}).get('name', '')
    conv = get_or_create_conversation(center.id, message.get('from', ''), contact_name=name)
    msg = WhatsAppMessage.objects.create(
        conversation=conv,
        direction='inbound',
        body=bleach.clean(_message_text(message), strip=True),
        message_type=message.get('type') or 'text',
        provider_message_id=provider_id,
        status='received',
    )
    WhatsAppConversation.objects.filter(pk=conv.pk).update(
        unread_count=F('unread_count') + 1, last_message_at=timezone.now(),
    )
    notifications.notify_role(
        'reception', center.id,
        **notifications.render('whatsapp_message', {'phone': conv.phone}),
        entity_type='whatsapp_conversation', entity_id=conv.id,
    )
    return msg


def _apply_status(status: dict[str, Any]) -> bool:
    new = status.get('status')
    msg = WhatsAppMessage.objects.filter(provider_message_id=status.get('id') or '').first()
    if msg is None or not new:
        return False
    if new == 'failed':
        msg.status = 'failed'
    elif STATUS_ORDER.get(new, -1) > STATUS_ORDER.get(msg.status, -1):
        msg.status = new
    else:
        return False
    msg.save(update_fields=['status'])
    return True


@transaction.atomic
def ingest_webhook(payload: dict[str, Any]) -> dict[str, int]:
    """Store messages and delivery statuses from a Cloud API webhook payload."""
    counts = {'messages': 0, 'statuses': 0, 'skipped': 0}
    if payload.get('object') != 'whatsapp_business_account':
        return counts
    for entry in payload.get('entry') or []:
        for change in entry.get('changes') or []:
            value = change.get('value') or {}
            phone_number_id = (value.get('metadata') or {}).get('phone_number_id')
            center = Center.objects.filter(whatsapp_phone_number_id=phone_number_id, is_active=True).first() \
                if phone_number_id else None
            for message in value.get('messages') or []:
                if center is None:
                    logger.warning('WhatsApp message for unknown phone_number_id %s', phone_number_id)
                    counts['skipped'] += 1
                    continue
                if _store_inbound(center, message, value.get('contacts') or []):
                    counts['messages'] += 1
                else:
                    counts['skipped'] += 1
            for status in value.get('statuses') or []:
                if _apply_status(status):
                    counts['statuses'] += 1
    return counts
