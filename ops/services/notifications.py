from __future__ import annotations

import logging
from typing import Iterable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

from ops.models import CaseChatMessage, Notification, User

logger = logging.getLogger(__name__)


def _broadcast(group: str, payload: dict) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return
    async_to_sync(channel_layer.group_send)(group, payload)


def notification_to_dict(n: Notification) -> dict:
    return {
        'id': n.id,
        'type': n.type,
        'title': n.title,
        'message': n.message,
        'link': n.link,
        'relatedId': n.related_id,
        'isRead': n.is_read,
        'createdAt': n.created_at.isoformat() if n.created_at else None,
    }


def create_notifications(user_ids: Iterable[int], *, type: str, title: str, message: str,
                         link: str = '', related_id=None) -> list[Notification]:
    user_ids = [uid for uid in dict.fromkeys(user_ids) if uid]
    if not user_ids:
        return []
    rows = []
    for uid in user_ids:
        n = Notification.objects.create(
            user_id=uid, type=type, title=title, message=message,
            link=link, related_id=str(related_id or ''),
        )
        _broadcast(f"user.{uid}", {'type': 'notify.message', 'payload': notification_to_dict(n)})
        rows.append(n)
    logger.info('notified %d user(s) type=%s related=%s', len(rows), type, related_id)
    return rows


def create_notification(user_id: Optional[int], **kwargs) -> Optional[Notification]:
    rows = create_notifications([user_id] if user_id else [], **kwargs)
    return rows[0] if rows else None


def notify_role(role: str, **kwargs) -> list[Notification]:
    ids = User.objects.filter(role=role, is_active=True).values_list('id', flat=True)
    return create_notifications(list(ids), **kwargs)


def chat_payload(msg: CaseChatMessage) -> dict:
    return {
        'id': msg.id,
        'leadId': msg.lead_id,
        'type': msg.type,
        'senderId': msg.sender_id,
        'senderName': (msg.sender.get_full_name() or msg.sender.username) if msg.sender_id else 'System',
        'content': msg.content,
        'createdAt': msg.created_at.isoformat() if msg.created_at else None,
    }


def broadcast_chat(msg: CaseChatMessage) -> None:
    _broadcast(f"lead.{msg.lead_id}", {'type': 'chat.message', 'payload': chat_payload(msg)})


def post_system_message(lead_id: int, text: str) -> CaseChatMessage:
    msg = CaseChatMessage.objects.create(lead_id=lead_id, type=CaseChatMessage.TYPE_SYSTEM, content=text)
    broadcast_chat(msg)
    return msg


def mark_read(user: User, notification_id: int) -> Optional[Notification]:
    n = Notification.objects.filter(id=notification_id, user=user).first()
    if n is None:
        return None
    if not n.is_read:
        n.is_read = True
        n.read_at = timezone.now()
        n.save(update_fields=['is_read', 'read_at'])
    return n


def mark_all_read(user: User) -> int:
    return Notification.objects.filter(user=user, is_read=False).update(is_read=True, read_at=timezone.now())


def unread_count(user: User) -> int:
    return Notification.objects.filter(user=user, is_read=False).count()
