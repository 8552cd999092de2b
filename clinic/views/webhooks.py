"""
Inbound provider webhooks.

WhatsApp Cloud API: ``GET`` answers the subscription handshake with the
``hub.challenge`` value, ``POST`` carries messages and delivery
statuses signed with ``X-Hub-Signature-256`` when an app secret is
configured.  Slack Events API: every request is signed with the signing
secret; ``url_verification`` requests are answered with their challenge.
"""
from __future__ import annotations

import json
import logging

from django.conf import settings
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny
from rest_framework.throttling import ScopedRateThrottle

from ..responses import fail, ok
from ..services.webhooks import record_event, verify_slack_signature, verify_whatsapp_signature
from ..services.whatsapp import ingest_webhook

logger = logging.getLogger(__name__)


def _json_body(raw: bytes):
    try:
        return json.loads(raw.decode('utf-8') or '{}')
    except (UnicodeDecodeError, ValueError):
        return None


@api_view(['GET', 'POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([ScopedRateThrottle])
def whatsapp_webhook(request):
    if request.method == 'GET':
        mode = request.query_params.get('hub.mode')
        token = request.query_params.get('hub.verify_token')
        challenge = request.query_params.get('hub.challenge', '')
        if mode == 'subscribe' and settings.WHATSAPP_VERIFY_TOKEN and token == settings.WHATSAPP_VERIFY_TOKEN:
            return HttpResponse(challenge, content_type='text/plain')
        logger.warning('WhatsApp webhook verification failed (mode=%s)', mode)
        return fail('Verification failed', status=status.HTTP_403_FORBIDDEN, code='verification_failed')

    raw = request.body
    signature_valid = False
    if settings.WHATSAPP_APP_SECRET:
        signature_valid = verify_whatsapp_signature(
            raw, request.headers.get('X-Hub-Signature-256'), settings.WHATSAPP_APP_SECRET,
        )
        if not signature_valid:
            logger.warning('Rejected WhatsApp webhook with a bad signature')
            return fail('Invalid signature', status=status.HTTP_403_FORBIDDEN, code='invalid_signature')
    payload = _json_body(raw)
    if not isinstance(payload, dict):
        return fail('Body must be a JSON object', code='invalid_payload')
    record_event('whatsapp', payload, event_type=payload.get('object', ''), signature_valid=signature_valid)
    counts = ingest_webhook(payload)
    logger.info('WhatsApp webhook: %(messages)d messages, %(statuses)d statuses, %(skipped)d skipped', counts)
    return ok(counts)


whatsapp_webhook.cls.throttle_scope = 'webhook'


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([ScopedRateThrottle])
def slack_webhook(request):
    raw = request.body
    secret = settings.SLACK_SIGNING_SECRET
    if not secret:
        return fail('Slack integration is not configured', status=status.HTTP_503_SERVICE_UNAVAILABLE,
                    code='not_configured')
    if not verify_slack_signature(
        raw,
        request.headers.get('X-Slack-Request-Timestamp'),
        request.headers.get('X-Slack-Signature'),
        secret,
        max_skew=settings.SLACK_MAX_SKEW_SECONDS,
    ):
        logger.warning('Rejected Slack webhook with a bad signature')
        return fail('Invalid signature', status=status.HTTP_403_FORBIDDEN, code='invalid_signature')
    payload = _json_body(raw)
    if not isinstance(payload, dict):
        return fail('Body must be a JSON object', code='invalid_payload')
    if payload.get('type') == 'url_verification':
        return HttpResponse(payload.get('challenge', ''), content_type='text/plain')
    event = payload.get('event') or {}
    record_event('slack', payload, event_type=event.get('type') or payload.get('type', ''), signature_valid=True)
    return ok({'received': True})


slack_webhook.cls.throttle_scope = 'webhook'
