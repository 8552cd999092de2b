"""
WhatsApp inbox for the reception desk.

Conversations are created by inbound webhooks or by sending the first
message.  Sending only queues the message; delivery is handled outside
this service and reported back through delivery status webhooks.
"""
from __future__ import annotations

from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..models import Patient, User, WhatsAppConversation, WhatsAppMessage
from ..permissions import permission_required, scope_to_center
from ..responses import ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.messaging import WhatsAppSendSerializer
from ..services.audit import log_action
from ..services.patients import resolve_center
from ..services.whatsapp import queue_outbound_message


def serialize_conversation(c: WhatsAppConversation) -> dict:
    return {
        'id': c.id,
        'center_id': c.center_id,
        'patient_id': c.patient_id,
        'patient_name': c.patient.name if c.patient_id else None,
        'phone': c.phone,
        'contact_name': c.contact_name,
        'unread_count': c.unread_count,
        'last_message_at': c.last_message_at.isoformat() if c.last_message_at else None,
    }


def serialize_message(m: WhatsAppMessage) -> dict:
    return {
        'id': m.id,
        'conversation_id': m.conversation_id,
        'direction': m.direction,
        'body': m.body,
        'message_type': m.message_type,
        'status': m.status,
        'provider_message_id': m.provider_message_id,
        'sent_by': m.sent_by_id,
        'created_at': m.created_at.isoformat(),
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('whatsapp:read_conversations')])
def conversations(request):
    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = scope_to_center(WhatsAppConversation.objects.select_related('patient'), request.user)
    search = q.validated_data.get('search')
    if search:
        qs = qs.filter(Q(phone__contains=search) | Q(contact_name__icontains=search)
                       | Q(patient__name__icontains=search))
    if request.query_params.get('unread') in ('1', 'true'):
        qs = qs.filter(unread_count__gt=0)
    return paginated(qs.order_by('-last_message_at', '-id'), serialize_conversation,
                     page=q.validated_data['page'], limit=q.validated_data['limit'])


@api_view(['GET'])
@permission_classes([IsAuthenticated, permission_required('whatsapp:read_conversations')])
def conversation_detail(request, pk: int):
    """Conversation with its messages; reading it clears the unread counter."""
    conv = scope_to_center(WhatsAppConversation.objects.select_related('patient'), request.user).filter(pk=pk).first()
    if conv is None:
        raise NotFound('Conversation not found')
    if conv.unread_count:
        conv.unread_count = 0
        conv.save(update_fields=['unread_count'])
    data = serialize_conversation(conv)
    data['messages'] = [serialize_message(m) for m in conv.messages.order_by('created_at', 'id')]
    return ok(data)


@api_view(['POST'])
@permission_classes([IsAuthenticated, permission_required('whatsapp:read_conversations', 'whatsapp:send')])
def send_message(request):
    user: User = request.user  # type: ignore[assignment]
    s = WhatsAppSendSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    if vd.get('conversation_id'):
        conv = scope_to_center(WhatsAppConversation.objects.all(), user).filter(pk=vd['conversation_id']).first()
        if conv is None:
            raise NotFound('Conversation not found')
        center_id, phone = conv.center_id, conv.phone
    elif vd.get('patient_id'):
        patient = scope_to_center(Patient.objects.all(), user).filter(pk=vd['patient_id']).first()
        if patient is None:
            raise NotFound('Patient not found')
        center_id, phone = patient.center_id, patient.phone
    else:
        center_id, phone = resolve_center(user, request.data.get('center_id')).id, vd['phone']
    try:
        msg = queue_outbound_message(center_id=center_id, phone=phone, body=vd['message'], sent_by=user)
    except ValueError as exc:
        raise ValidationError({'message': [str(exc)]})
    log_action(user=user, action='whatsapp_send', entity_type='whatsapp_message', entity_id=msg.id,
               detail={'conversation_id': msg.conversation_id}, request=request)
    return ok(serialize_message(msg), message='Message queued', status=status.HTTP_201_CREATED)
