"""Activity log writer used by the views and services."""
from typing import Optional, Any, Dict

from django.contrib.auth import get_user_model

from clinic.models import ActivityLog

User = get_user_model()


def client_ip(request) -> Optional[str]:
    if request is None:
        return None
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    return request.META.get('REMOTE_ADDR') or None


def log_action(*, user: Optional[User], action: str, entity_type: str = '', entity_id: Any = None,
               detail: Optional[Dict[str, Any]] = None, request=None) -> ActivityLog:
    is_user = isinstance(user, User) and getattr(user, 'pk', None)
    return ActivityLog.objects.create(
        user=user if is_user else None,
        user_role=getattr(user, 'role', '') if is_user else '',
        center_id=getattr(user, 'center_id', None) if is_user else None,
        action=action,
        entity_type=entity_type,
        entity_id='' if entity_id is None else str(entity_id),
        detail=detail or {},
        ip=client_ip(request),
    )
