"""Signature checks for inbound provider webhooks."""
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Optional

from clinic.models import WebhookEvent


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_whatsapp_signature(raw_body: bytes, header: Optional[str], secret: str) -> bool:
    """Check Meta's ``X-Hub-Signature-256: sha256=<hex>`` header."""
    if not header or not header.startswith('sha256='):
        return False
    expected = _hex_hmac(secret, raw_body)
    return hmac.compare_digest(expected, header[len('sha256='):])


def verify_slack_signature(raw_body: bytes, timestamp: Optional[str], signature: Optional[str], secret: str,
                           max_skew: int = 300, now: Optional[float] = None) -> bool:
    """Check Slack's ``v0=<hex>`` signature over ``v0:<timestamp>:<body>``."""
    if not timestamp or not signature:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - ts) > max_skew:
        return False
    base = b'v0:' + timestamp.encode() + b':' + raw_body
    return hmac.compare_digest('v0=' + _hex_hmac(secret, base), signature)


def record_event(provider: str, payload, *, event_type: str = '', signature_valid: bool) -> WebhookEvent:
    return WebhookEvent.objects.create(
        provider=provider,
        event_type=event_type,
        payload=payload if isinstance(payload, dict) else {'raw': payload},
        signature_valid=signature_valid,
    )
