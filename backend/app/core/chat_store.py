# app/core/chat_store.py
"""
Message store: the chat tables accessed through Tortoise ORM.
ORM failures surface as StoreUnavailable and are never retried here.
"""
import datetime as dt
import functools
import logging

from tortoise.exceptions import BaseORMException
from tortoise.functions import Count

from app.core.errors import StoreUnavailable
from app.models.chat import ChatMessage, ChatRoom

logger = logging.getLogger(__name__)

PEER_ROLE = {"student": "faculty", "faculty": "student"}


def _guarded(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except BaseORMException as e:
            logger.error("[chat] store operation %s failed: %r", fn.__name__, e)
            raise StoreUnavailable(details=str(e))
    return wrapper


def isoformat(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value else None


def message_row(m: ChatMessage, sender_name: str | None = None) -> dict:
    row = {
        "id": m.id,
        "room_id": m.room_id,
        "sender_id": m.sender_id,
        "sender_type": m.sender_type,
        "message": m.message,
        "message_type": m.message_type,
        "is_read": m.is_read,
        "edited": m.edited,
        "created_at": isoformat(m.created_at),
    }
    if sender_name is not None:
        row["sender_name"] = sender_name
    return row


class ChatStore:
    @_guarded
    async def get_room(self, room_id: int) -> ChatRoom | None:
        return await ChatRoom.get_or_none(id=room_id)

    @_guarded
    async def get_or_create_room(self, student_id: int, faculty_id: int) -> tuple[ChatRoom, bool]:
        return await ChatRoom.get_or_create(student_id=student_id, faculty_id=faculty_id)

    @_guarded
    async def save_message(self, room_id: int, sender_id: int, sender_type: str, body: str, kind: str) -> ChatMessage:
        msg = await ChatMessage.create(
            room_id=room_id,
            sender_id=sender_id,
            sender_type=sender_type,
            message=body,
            message_type=kind,
            is_read=False,
        )
        await ChatRoom.filter(id=room_id).update(updated_at=dt.datetime.now(dt.timezone.utc))
        return msg

    @_guarded
    async def list_rooms(self, user_id: int, role: str) -> list[dict]:
        peer = PEER_ROLE[role]
        rooms = await ChatRoom.filter(**{f"{role}_id": user_id}).prefetch_related(peer).order_by("-updated_at")
        unread = await (
            ChatMessage.filter(room_id__in=[r.id for r in rooms], sender_type=peer, is_read=False)
            .annotate(count=Count("id"))
            .group_by("room_id")
            .values("room_id", "count")
        )
        unread_by_room = {row["room_id"]: row["count"] for row in unread}
        items = []
        for r in rooms:
            last = await ChatMessage.filter(room_id=r.id).order_by("-created_at", "-id").first()
            other = getattr(r, peer)
            items.append({
                "room_id": r.id,
                f"{peer}_id": other.id,
                f"{peer}_name": other.name,
                "department": other.branch,
                f"{peer}_email": other.email,
                "created_at": isoformat(r.created_at),
                "updated_at": isoformat(r.updated_at),
                "unread_count": unread_by_room.get(r.id, 0),
                "last_message": last.message if last else None,
                "last_message_time": isoformat(last.created_at) if last else None,
            })
        return items

    @_guarded
    async def list_messages(self, room_id: int, offset: int, limit: int) -> list[ChatMessage]:
        rows = await ChatMessage.filter(room_id=room_id).order_by("-created_at", "-id").offset(offset).limit(limit)
        rows.reverse()  # oldest first
        return rows

    @_guarded
    async def mark_room_read(self, room_id: int, reader_role: str) -> int:
        """Mark everything the reader's peer sent in the room as read."""
        return await ChatMessage.filter(room_id=room_id, sender_type=PEER_ROLE[reader_role], is_read=False).update(is_read=True)

    @_guarded
    async def get_message(self, message_id: int) -> ChatMessage | None:
        return await ChatMessage.get_or_none(id=message_id)

    @_guarded
    async def mark_message_read(self, message_id: int) -> int:
        return await ChatMessage.filter(id=message_id).update(is_read=True)

    @_guarded
    async def update_message(self, message_id: int, body: str) -> int:
        return await ChatMessage.filter(id=message_id).update(
            message=body, edited=True, updated_at=dt.datetime.now(dt.timezone.utc)
        )

    @_guarded
    async def delete_message(self, message_id: int) -> int:
        return await ChatMessage.filter(id=message_id).delete()
