"""In-app notifications and the activity log."""
from __future__ import annotations

from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound
from rest_framework.permissions import IsAuthenticated

from ..models import ActivityLog, Notification
from ..permissions import IsSupervisorRole, scope_to_center
from ..responses import ok, paginated
from ..serializers.common import ListQuerySerializer
from ..serializers.messaging import NotificationUpdateSerializer


def serialize_notification(n: Notification) -> dict:
    return {
        'id': n.id,
        'type': n.type,
        'title': n.title,
        'message': n.message,
        'patient_id': n.patient_id,
        'entity_type': n.entity_type,
        'entity_id': n.entity_id,
        'is_read': n.is_read,
        'read_at': n.read_at.isoformat() if n.read_at else None,
        'created_at': n.created_at.isoformat(),
    }


def serialize_log(log: ActivityLog) -> dict:
    return {
        'id': log.id,
        'user_id': log.user_id,
        'user_role': log.user_role,
        'center_id': log.center_id,
        'action': log.action,
        'entity_type': log.entity_type,
        'entity_id': log.entity_id,
        'detail': log.detail,
        'ip': log.ip,
        'created_at': log.created_at.isoformat(),
    }


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def notifications(request):
    """The caller's notifications, newest first; ``?unread=1`` for unread only."""
    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = Notification.objects.filter(user=request.user)
    if request.query_params.get('unread') in ('1', 'true'):
        qs = qs.filter(is_read=False)
    if q.validated_data.get('status'):
        qs = qs.filter(type=q.validated_data['status'])
    response = paginated(qs.order_by('-created_at', '-id'), serialize_notification,
                         page=q.validated_data['page'], limit=q.validated_data['limit'])
    response.data['unread_count'] = Notification.objects.filter(user=request.user, is_read=False).count()
    return response


@api_view(['PUT', 'DELETE'])
@permission_classes([IsAuthenticated])
def notification_detail(request, pk: int):
    n = Notification.objects.filter(pk=pk, user=request.user).first()
    if n is None:
        raise NotFound('Notification not found')
    if request.method == 'DELETE':
        n.delete()
        return ok({'id': pk}, message='Notification deleted')
    s = NotificationUpdateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    n.is_read = s.validated_data['is_read']
    n.read_at = timezone.now() if n.is_read else None
    n.save(update_fields=['is_read', 'read_at'])
    return ok(serialize_notification(n))


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def mark_all_read(request):
    updated = Notification.objects.filter(user=request.user, is_read=False).update(
        is_read=True, read_at=timezone.now(),
    )
    return ok({'updated': updated}, message='All notifications marked as read')


@api_view(['GET'])
@permission_classes([IsAuthenticated, IsSupervisorRole])
def activity_logs(request):
    q = ListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = scope_to_center(ActivityLog.objects.all(), request.user)
    for param in ('action', 'entity_type', 'entity_id', 'user_role'):
        value = request.query_params.get(param)
        if value:
            qs = qs.filter(**{param: value})
    user_id = request.query_params.get('user_id')
    if user_id and user_id.isdigit():
        qs = qs.filter(user_id=int(user_id))
    return paginated(qs.order_by('-created_at', '-id'), serialize_log,
                     page=q.validated_data['page'], limit=q.validated_data['limit'])
