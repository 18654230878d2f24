import json
import logging

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from ops.exceptions import DomainError, Forbidden, NotFound
from ops.models import Lead
from ops.permissions import can_access_lead
from ops.services.pipeline import post_user_message

logger = logging.getLogger(__name__)


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """
    Send an error frame in the shared shape.
    Codes: 4xxx for client errors, 5xxx for server errors.
    """
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


def _parse_send(text_data: str):
    """Return ``(content, None)`` for a valid ``{"type": "send"}`` frame, else ``(None, (code, reason))``."""
    try:
        data = json.loads(text_data)
    except ValueError:
        return None, (4000, "invalid_json")
    if not isinstance(data, dict):
        return None, (4001, "invalid_payload")
    if data.get("type") != "send":
        return None, (4002, "unsupported_type")
    content = data.get("content", "")
    if not isinstance(content, str):
        return None, (4003, "invalid_content_type")
    content = content.strip()
    if not content:
        return None, (4004, "empty_message")
    if len(content) > settings.CHAT_MAX_LENGTH:
        return None, (4005, "message_too_long")
    return content, None


def _lead_owner(lead_id: int):
    return Lead.objects.filter(id=lead_id).values_list("bd_id", "team_id").first()


class CaseChatConsumer(AsyncWebsocketConsumer):
    async def connect(self):
        try:
            self.lead_id = int(self.scope["url_route"]["kwargs"].get("lead_id"))
        except (KeyError, TypeError, ValueError):
            await self.close(code=4001)
            return

        user = self.scope.get("user") or AnonymousUser()
        if not user.is_authenticated:
            await self.close(code=4001)
            return

        owner = await sync_to_async(_lead_owner)(self.lead_id)
        if owner is None:
            await self.close(code=4004)
            return
        if not can_access_lead(user, *owner):
            await self.close(code=4003)
            return

        self.group_name = f"lead.{self.lead_id}"
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def receive(self, text_data=None, bytes_data=None):
        if not text_data:
            return
        content, error = _parse_send(text_data)
        if error:
            await _ws_error(self, *error)
            return

        user = self.scope.get("user") or AnonymousUser()
        try:
            # the service broadcasts the stored message to the group
            msg = await sync_to_async(post_user_message)(self.lead_id, user, content)
        except NotFound:
            await _ws_error(self, 4006, "lead_not_found", close=True)
            return
        except Forbidden:
            await _ws_error(self, 4007, "forbidden", close=True)
            return
        except DomainError as e:
            await _ws_error(self, 4008, e.default_code)
            return
        except Exception:
            logger.exception("chat send failed lead=%s", self.lead_id)
            await _ws_error(self, 5000, "server_error")
            return
        await self.send(json.dumps({"type": "ack", "ok": True, "id": msg.id}))

    # event: {"type": "chat.message", "payload": {...}}
    async def chat_message(self, event):
        await self.send(json.dumps({"type": "message", **event.get("payload", {})}))
