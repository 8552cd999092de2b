"""
User administration endpoints (admin only).

Admins bound to a center manage that center's staff; platform operators
(no center) may place users in any center.
"""
from __future__ import annotations

from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Q
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated

from ..exceptions import Conflict
from ..models import User
from ..permissions import IsAdminRole, ROLE_PERMISSIONS, scope_to_center
from ..responses import ok, paginated
from ..serializers.auth import UserCreateSerializer, UserUpdateSerializer
from ..serializers.common import ListQuerySerializer
from ..services.audit import log_action
from ..services.patients import resolve_center


def serialize_user(u: User, *, with_permissions: bool = False) -> dict:
    data = {
        'id': u.id,
        'username': u.username,
        'email': u.email,
        'name': u.display_name,
        'first_name': u.first_name,
        'last_name': u.last_name,
        'role': u.role,
        'center_id': u.center_id,
        'phone': u.phone,
        'specialty': u.specialty,
        'is_active': u.is_active,
        'last_login': u.last_login.isoformat() if u.last_login else None,
    }
    if with_permissions:
        data['permissions'] = sorted(ROLE_PERMISSIONS.get(u.role, ()))
    return data


def _check_password(password, user=None):
    try:
        validate_password(password, user=user)
    except DjangoValidationError as e:
        raise ValidationError({'password': e.messages})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def users(request):
    if request.method == 'GET':
        q = ListQuerySerializer(data=request.query_params)
        q.is_valid(raise_exception=True)
        qs = scope_to_center(User.objects.all(), request.user)
        role = request.query_params.get('role')
        if role:
            qs = qs.filter(role=role)
        search = q.validated_data.get('search')
        if search:
            qs = qs.filter(
                Q(username__icontains=search) | Q(first_name__icontains=search) | Q(last_name__icontains=search)
            )
        return paginated(qs.order_by('username'), serialize_user,
                         page=q.validated_data['page'], limit=q.validated_data['limit'])

    s = UserCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    if User.objects.filter(username=vd['username']).exists():
        raise Conflict('Username already taken.')
    center = resolve_center(request.user, vd.pop('center_id', None))
    password = vd.pop('password')
    _check_password(password)
    user = User.objects.create_user(password=password, center=center, **vd)
    log_action(user=request.user, action='user_create', entity_type='user', entity_id=user.id,
               detail={'role': user.role}, request=request)
    return ok(serialize_user(user), message='User created', status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'DELETE'])
@permission_classes([IsAuthenticated, IsAdminRole])
def user_detail(request, pk: int):
    target = scope_to_center(User.objects.all(), request.user).filter(pk=pk).first()
    if target is None:
        raise NotFound('User not found')

    if request.method == 'GET':
        return ok(serialize_user(target, with_permissions=True))

    if request.method == 'DELETE':
        if target.pk == request.user.pk:
            raise ValidationError({'detail': 'You cannot deactivate your own account.'})
        target.is_active = False
        target.save(update_fields=['is_active'])
        log_action(user=request.user, action='user_deactivate', entity_type='user', entity_id=target.id,
                   request=request)
        return ok(serialize_user(target), message='User deactivated')

    s = UserUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    vd = dict(s.validated_data)
    password = vd.pop('password', None)
    if password:
        _check_password(password, target)
        target.set_password(password)
    for field, value in vd.items():
        setattr(target, field, value)
    target.save()
    log_action(user=request.user, action='user_update', entity_type='user', entity_id=target.id,
               detail={'fields': sorted(vd) + (['password'] if password else [])}, request=request)
    return ok(serialize_user(target), message='User updated')
