"""
Authentication endpoints.

Login establishes a Django session (cookie) for the dashboards and also
returns a DRF token and a JWT pair for API clients.  Logout ends the
session, drops the token and blacklists refresh tokens.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate, login, logout
from rest_framework import status
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.serializers import TokenRefreshSerializer
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken
from rest_framework_simplejwt.tokens import RefreshToken

from ..models import User
from ..responses import fail, ok
from ..serializers.auth import LoginSerializer, LogoutSerializer, RefreshSerializer
from ..services.audit import client_ip, log_action
from .users import serialize_user

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    """Username (or email) and password login; the role always comes from the database."""
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    username = s.validated_data['username']
    password = s.validated_data['password']

    user = authenticate(request, username=username, password=password)
    if user is None and '@' in username:
        match = User.objects.filter(email__iexact=username).first()
        if match is not None:
            user = authenticate(request, username=match.username, password=password)
    if user is None:
        logger.warning('Failed login for %s from %s', username, client_ip(request))
        log_action(user=None, action='login_failed', entity_type='user',
                   detail={'username': username}, request=request)
        return fail('Invalid username or password', status=status.HTTP_401_UNAUTHORIZED, code='invalid_credentials')

    login(request, user)
    log_action(user=user, action='login', entity_type='user', entity_id=user.id, request=request)
    token_obj, _ = Token.objects.get_or_create(user=user)
    refresh = RefreshToken.for_user(user)
    return ok({
        'user': serialize_user(user, with_permissions=True),
        'token': token_obj.key,
        'jwt_access': str(refresh.access_token),
        'jwt_refresh': str(refresh),
    }, message='Logged in')

# ScopedRateThrottle reads the scope from the wrapped APIView class
login_view.cls.throttle_scope = 'login'


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def logout_view(request):
    s = LogoutSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    refresh = s.validated_data.get('refresh')
    count = 0
    if refresh:
        try:
            RefreshToken(refresh).blacklist()
            count = 1
        except TokenError as e:
            return fail(str(e), status=status.HTTP_400_BAD_REQUEST, code='token_not_valid')
    else:
        for token in OutstandingToken.objects.filter(user=request.user):
            _, created = BlacklistedToken.objects.get_or_create(token=token)
            count += int(created)
    Token.objects.filter(user=request.user).delete()
    log_action(user=request.user, action='logout', entity_type='user', entity_id=request.user.id, request=request)
    logout(request)
    return ok({'blacklisted': count}, message='Logged out')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def me(request):
    return ok(serialize_user(request.user, with_permissions=True))


@api_view(['POST'])
@permission_classes([AllowAny])
def refresh_view(request):
    """Exchange a refresh token for a new access token."""
    s = RefreshSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    jwt = TokenRefreshSerializer(data={'refresh': s.validated_data['refresh']})
    try:
        jwt.is_valid(raise_exception=True)
    except TokenError as e:
        return fail(str(e), status=status.HTTP_401_UNAUTHORIZED, code='token_not_valid')
    data = {'jwt_access': jwt.validated_data['access']}
    if 'refresh' in jwt.validated_data:
        data['jwt_refresh'] = jwt.validated_data['refresh']
    return ok(data)
