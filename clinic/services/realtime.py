"""Broadcast helpers for the ``ws/updates/`` channel."""
from __future__ import annotations

from typing import Any

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer


def center_group(center_id) -> str:
    return f"center.{center_id or 'all'}"


def broadcast(center_id, event: str, payload: dict[str, Any]) -> None:
    """Push ``payload`` to every socket subscribed to the center."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    message = {"type": "center.update", "event": event, **payload}
    async_to_sync(channel_layer.group_send)(center_group(center_id), message)
    if center_id:
        # operators without a center listen on the shared group
        async_to_sync(channel_layer.group_send)(center_group(None), message)
