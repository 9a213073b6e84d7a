# app/core/chat.py
"""
Realtime chat coordinator.

Per connection: UNAUTHENTICATED -> AUTHENTICATED -> (IN_ROOM)* -> CLOSED.

The identity bound at ``authenticate`` is the only authorization basis for the
rest of the connection's life; ids declared in later events must match it.
Registry and room-index mutations are synchronous. Only room lookups,
persistence and the broadcast await, and state is re-checked after each await
before it is mutated.
"""
import datetime as dt
import logging
from typing import Callable, Optional

import jwt

from app.core.accounts import AccountDirectory, AccountRef
from app.core.chat_store import PEER_ROLE, ChatStore, message_row
from app.core.errors import (
    AuthInvalid,
    AuthRequired,
    IdentityMismatch,
    InvalidField,
    MissingFields,
    RoomNotFound,
    StoreUnavailable,
    Unauthenticated,
)
from app.core.pubsub import ChatConnection, ConnectionRecord, ConnectionRegistry, Identity, RoomChannel
from app.core.security import identity_from_token
from app.models.chat import ChatRoom

logger = logging.getLogger(__name__)

CHAT_ROLES = ("student", "faculty")
MESSAGE_TYPES = ("text", "image", "file")
MAX_ID = 2**31 - 1  # ids are 32-bit integer columns


def _as_int(value) -> Optional[int]:
    """Positive id that fits the id columns, else None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        n = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return n if 1 <= n <= MAX_ID else None


def _message_kind(kind) -> str:
    if kind is None or kind == "":
        return "text"
    if kind not in MESSAGE_TYPES:
        raise InvalidField(f"messageType must be one of: {', '.join(MESSAGE_TYPES)}")
    return kind


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ChatCoordinator:
    def __init__(
        self,
        store: ChatStore,
        directory: AccountDirectory,
        token_decoder: Callable[[str], tuple[int, str]] = identity_from_token,
        clock: Callable[[], dt.datetime] = _utcnow,
    ):
        self.store = store
        self.directory = directory
        self.token_decoder = token_decoder
        self.clock = clock
        self.registry = ConnectionRegistry()
        self.rooms = RoomChannel()

    # ---------- handshake ----------
    def authenticate(self, conn: ChatConnection, claimed_user_id, claimed_role, token) -> Identity:
        if not token:
            raise AuthRequired()
        try:
            user_id, role = self.token_decoder(token)
        except jwt.InvalidTokenError as e:
            logger.info("[chat] token rejected: %r", e)
            raise AuthInvalid("Authentication failed")

        if _as_int(claimed_user_id) != user_id or claimed_role != role:
            logger.info("[chat] token identity %s/%s does not match claim %s/%s",
                        user_id, role, claimed_user_id, claimed_role)
            raise AuthInvalid()

        identity = Identity(user_id, role)
        if conn.identity is not None and conn.identity != identity:
            self.disconnect(conn)
        conn.identity = identity
        replaced = self.registry.register(ConnectionRecord(identity, conn, online=True, last_seen=self.clock()))
        if replaced is not None and replaced.connection is not conn:
            logger.info("[chat] %s %s reconnected; previous connection superseded", role, user_id)
        logger.info("[chat] %s %s connected", role, user_id)
        return identity

    def _bound(self, conn: ChatConnection) -> Identity:
        identity = conn.identity
        if identity is None or not self.registry.is_current(identity, conn):
            raise Unauthenticated()
        return identity

    @staticmethod
    def _check_participant(room: ChatRoom, identity: Identity) -> None:
        if room.participant_id(identity.role) != identity.user_id:
            raise IdentityMismatch("Access denied to this chat room")

    async def open_room(self, identity: Identity, peer_id) -> tuple[ChatRoom, AccountRef, bool]:
        """
        Get or create the room between ``identity`` and ``peer_id``.
        Returns ``(room, peer, created)``.
        """
        if peer_id is None:
            raise MissingFields("roomId or peerId is required")
        if identity.role not in CHAT_ROLES:
            raise IdentityMismatch("Only students and faculty can chat")
        peer_role = PEER_ROLE[identity.role]
        pid = _as_int(peer_id)
        peer = await self.directory.get(pid, peer_role) if pid is not None else None
        if peer is None:
            raise RoomNotFound(f"No {peer_role} with id {peer_id}")
        if identity.role == "student":
            room, created = await self.store.get_or_create_room(identity.user_id, pid)
        else:
            room, created = await self.store.get_or_create_room(pid, identity.user_id)
        if created:
            logger.info("[chat] created room %s for student %s / faculty %s", room.id, room.student_id, room.faculty_id)
        return room, peer, created

    async def _room_for(self, identity: Identity, room_id=None, peer_id=None) -> ChatRoom:
        if room_id is not None:
            rid = _as_int(room_id)
            room = await self.store.get_room(rid) if rid is not None else None
            if room is None:
                raise RoomNotFound()
            return room
        room, _, _ = await self.open_room(identity, peer_id)
        return room

    # ---------- rooms ----------
    async def join_room(self, conn: ChatConnection, user_id, room_id=None, peer_id=None) -> int:
        identity = self._bound(conn)
        if _as_int(user_id) != identity.user_id:
            raise IdentityMismatch()

        room = await self._room_for(identity, room_id=room_id, peer_id=peer_id)
        self._check_participant(room, identity)

        # The connection may have closed or been superseded while we awaited.
        if not self.registry.is_current(identity, conn):
            raise Unauthenticated()
        self.rooms.join(room.id, identity)
        logger.info("[chat] %s %s joined room %s", identity.role, identity.user_id, room.id)
        return room.id

    def leave_room(self, conn: ChatConnection, room_id) -> None:
        identity = self._bound(conn)
        rid = _as_int(room_id)
        if rid is not None:
            self.rooms.leave(rid, identity)

    # ---------- messages ----------
    async def _deliver(self, identity: Identity, room: ChatRoom, body: str, kind: str) -> dict:
        """Persist a message, then broadcast it to the room's connected members."""
        msg = await self.store.save_message(room.id, identity.user_id, identity.role, body, kind)
        sender_name = await self.directory.display_name(identity.user_id, identity.role)
        self.registry.touch(identity, self.clock())

        payload = {"type": "new_message", **message_row(msg, sender_name=sender_name)}
        payload["roomId"] = room.id
        delivered = await self.rooms.publish(room.id, payload, self.registry)
        logger.info("[chat] message %s in room %s by %s %s delivered to %d connection(s)",
                    msg.id, room.id, identity.role, identity.user_id, delivered)
        return payload

    async def send_message(self, conn: ChatConnection, room_id, body, kind: str | None = None,
                           sender_id=None, sender_type=None) -> dict:
        identity = self._bound(conn)
        if room_id is None or not body or sender_id is None or not sender_type:
            raise MissingFields()
        if _as_int(sender_id) != identity.user_id or sender_type != identity.role:
            raise IdentityMismatch()
        kind = _message_kind(kind)

        room = await self._room_for(identity, room_id=room_id)
        self._check_participant(room, identity)
        return await self._deliver(identity, room, body, kind)

    async def post_message(self, identity: Identity, peer_id, body, kind: str | None = None) -> dict:
        """
        Send to a peer without a socket (REST). The pair's room is created on
        the first message; connected room members still get the broadcast.
        """
        if peer_id is None or not body or not str(body).strip():
            raise MissingFields("peerId and message are required")
        kind = _message_kind(kind)
        room, _, _ = await self.open_room(identity, peer_id)
        return await self._deliver(identity, room, body, kind)

    async def broadcast_to_students(self, identity: Identity, body, kind: str | None = None) -> tuple[int, int]:
        """
        Post the same message from a faculty member into their room with every
        student, creating rooms as needed. A failure for one student is logged
        and skipped. Returns ``(sent, total_students)``.
        """
        if identity.role != "faculty":
            raise IdentityMismatch("Only faculty can broadcast")
        if not body or not str(body).strip():
            raise MissingFields("message is required")
        kind = _message_kind(kind)
        body = body.strip()

        students = await self.directory.list_role("student")
        sent = 0
        for student in students:
            try:
                room, _ = await self.store.get_or_create_room(student.id, identity.user_id)
                await self._deliver(identity, room, body, kind)
                sent += 1
            except StoreUnavailable as e:
                logger.warning("[chat] broadcast to student %s failed: %s", student.id, e.details or e.message)
        logger.info("[chat] faculty %s broadcast sent to %d/%d students", identity.user_id, sent, len(students))
        return sent, len(students)

    # ---------- teardown ----------
    def disconnect(self, conn: ChatConnection) -> None:
        identity = conn.identity
        if identity is None:
            return
        conn.identity = None
        if self.registry.unregister(identity, conn):
            left = self.rooms.drop_member(identity)
            logger.info("[chat] %s %s disconnected (left rooms %s)", identity.role, identity.user_id, left)
