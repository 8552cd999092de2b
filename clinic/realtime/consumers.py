import json

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from clinic.permissions import CLINICAL_ROLES
from clinic.services.realtime import center_group


class UpdatesConsumer(AsyncWebsocketConsumer):
    """Queue and visit updates for the staff of one center.

    Authenticated through the session cookie (``AuthMiddlewareStack``).
    Staff join their center's group; operators without a center join
    the shared group that receives every center's events.
    """

    group = None

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated or getattr(user, "role", None) not in CLINICAL_ROLES:
            await self.close(code=4403)
            return
        self.group = center_group(await self._center_id(user))
        await self.channel_layer.group_add(self.group, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "group": self.group}))

    async def disconnect(self, close_code):
        if self.group:
            await self.channel_layer.group_discard(self.group, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        # clients only listen; answer pings so proxies keep the socket open
        if text_data and text_data.strip() == "ping":
            await self.send("pong")

    async def center_update(self, event):
        # event: {"type": "center.update", "event": "queue.added", ...}
        payload = {k: v for k, v in event.items() if k != "type"}
        await self.send(json.dumps(payload, default=str))

    @database_sync_to_async
    def _center_id(self, user):
        return user.center_id
