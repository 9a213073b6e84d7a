"""
Unit tests for core.chat module.
Drives the ChatCoordinator with mock websockets, an in-memory message store
and a stub token decoder.
"""
import datetime as dt
import json
import itertools

import jwt
import pytest

from app.core.chat import ChatCoordinator
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
from app.core.pubsub import ChatConnection, Identity


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self):
        self.sent_texts = []

    async def send_text(self, text: str):
        self.sent_texts.append(text)

    def frames(self):
        return [json.loads(t) for t in self.sent_texts]


class Room:
    def __init__(self, id, student_id, faculty_id):
        self.id = id
        self.student_id = student_id
        self.faculty_id = faculty_id

    def participant_id(self, role):
        return {"student": self.student_id, "faculty": self.faculty_id}.get(role)


class Message:
    def __init__(self, id, room_id, sender_id, sender_type, message, message_type):
        self.id = id
        self.room_id = room_id
        self.sender_id = sender_id
        self.sender_type = sender_type
        self.message = message
        self.message_type = message_type
        self.is_read = False
        self.edited = False
        self.created_at = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)


class MemoryStore:
    def __init__(self):
        self.rooms = {}
        self.messages = []
        self.touched = []
        self.fail = False
        self._ids = itertools.count(1)

    async def get_room(self, room_id):
        return self.rooms.get(room_id)

    async def get_or_create_room(self, student_id, faculty_id):
        for room in self.rooms.values():
            if (room.student_id, room.faculty_id) == (student_id, faculty_id):
                return room, False
        room = Room(next(self._ids), student_id, faculty_id)
        self.rooms[room.id] = room
        return room, True

    async def save_message(self, room_id, sender_id, sender_type, body, kind):
        if self.fail:
            raise StoreUnavailable(details="db down")
        msg = Message(len(self.messages) + 1, room_id, sender_id, sender_type, body, kind)
        self.messages.append(msg)
        self.touched.append(room_id)
        return msg


class Directory:
    names = {(1, "student"): "Sam", (2, "faculty"): "Dr. Faye", (3, "faculty"): "Dr. Other"}

    async def get(self, user_id, role):
        return object() if (user_id, role) in self.names else None

    async def display_name(self, user_id, role):
        return self.names.get((user_id, role), "Unknown")


def decode(token):
    # tokens look like "student:1"
    try:
        role, uid = token.split(":")
        return int(uid), role
    except ValueError:
        raise jwt.InvalidTokenError(token)


@pytest.fixture
def store():
    s = MemoryStore()
    s.rooms[10] = Room(10, 1, 2)
    return s


@pytest.fixture
def chat(store):
    return ChatCoordinator(store, Directory(), token_decoder=decode)


def connect(chat, user_id, role):
    conn = ChatConnection(MockWebSocket())
    chat.authenticate(conn, user_id, role, f"{role}:{user_id}")
    return conn


class TestAuthenticate:
    def test_success_binds_identity(self, chat):
        conn = ChatConnection(MockWebSocket())
        identity = chat.authenticate(conn, 1, "student", "student:1")
        assert identity == Identity(1, "student")
        assert conn.identity == identity
        assert chat.registry.get(identity).connection is conn
        assert chat.registry.get(identity).online is True

    def test_string_user_id_accepted(self, chat):
        conn = ChatConnection(MockWebSocket())
        assert chat.authenticate(conn, "1", "student", "student:1").user_id == 1

    def test_missing_token(self, chat):
        conn = ChatConnection(MockWebSocket())
        with pytest.raises(AuthRequired):
            chat.authenticate(conn, 1, "student", None)
        assert conn.identity is None

    def test_bad_token(self, chat):
        with pytest.raises(AuthInvalid):
            chat.authenticate(ChatConnection(MockWebSocket()), 1, "student", "garbage")

    @pytest.mark.parametrize("claimed", [(2, "student"), (1, "faculty")])
    def test_claim_must_match_token(self, chat, claimed):
        conn = ChatConnection(MockWebSocket())
        with pytest.raises(AuthInvalid):
            chat.authenticate(conn, *claimed, "student:1")
        assert len(chat.registry) == 0

    def test_reconnect_supersedes_old_connection(self, chat):
        old = connect(chat, 1, "student")
        new = connect(chat, 1, "student")
        assert chat.registry.get(Identity(1, "student")).connection is new
        chat.disconnect(old)
        assert Identity(1, "student") in chat.registry


class TestJoinRoom:
    @pytest.mark.asyncio
    async def test_unauthenticated(self, chat):
        with pytest.raises(Unauthenticated):
            await chat.join_room(ChatConnection(MockWebSocket()), 1, room_id=10)

    @pytest.mark.asyncio
    async def test_declared_user_must_match(self, chat):
        conn = connect(chat, 1, "student")
        with pytest.raises(IdentityMismatch):
            await chat.join_room(conn, 5, room_id=10)

    @pytest.mark.asyncio
    async def test_join_twice_is_idempotent(self, chat):
        conn = connect(chat, 1, "student")
        assert await chat.join_room(conn, 1, room_id=10) == 10
        assert await chat.join_room(conn, 1, room_id="10") == 10
        assert chat.rooms.members(10) == {Identity(1, "student")}

    @pytest.mark.asyncio
    async def test_non_participant_rejected(self, chat):
        conn = connect(chat, 3, "faculty")
        with pytest.raises(IdentityMismatch):
            await chat.join_room(conn, 3, room_id=10)
        assert chat.rooms.members(10) == set()

    @pytest.mark.asyncio
    async def test_unknown_room(self, chat):
        conn = connect(chat, 1, "student")
        with pytest.raises(RoomNotFound):
            await chat.join_room(conn, 1, room_id=999)

    @pytest.mark.asyncio
    async def test_peer_creates_room_once(self, chat, store):
        conn = connect(chat, 1, "student")
        first = await chat.join_room(conn, 1, peer_id=3)
        second = await chat.join_room(conn, 1, peer_id=3)
        assert first == second
        assert [r for r in store.rooms.values() if (r.student_id, r.faculty_id) == (1, 3)] != []
        assert len(store.rooms) == 2

    @pytest.mark.asyncio
    async def test_unknown_peer(self, chat):
        conn = connect(chat, 1, "student")
        with pytest.raises(RoomNotFound):
            await chat.join_room(conn, 1, peer_id=77)

    @pytest.mark.asyncio
    async def test_room_or_peer_required(self, chat):
        conn = connect(chat, 1, "student")
        with pytest.raises(MissingFields):
            await chat.join_room(conn, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ids", [{"room_id": 10**20}, {"room_id": "abc"}, {"room_id": -1}, {"peer_id": 10**20}])
    async def test_out_of_range_ids_are_typed_failures(self, chat, store, ids):
        conn = connect(chat, 1, "student")
        with pytest.raises(RoomNotFound):
            await chat.join_room(conn, 1, **ids)
        assert len(store.rooms) == 1
        assert chat.rooms.members(10) == set()


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_before_authenticate_nothing_happens(self, chat, store):
        conn = ChatConnection(MockWebSocket())
        with pytest.raises(Unauthenticated):
            await chat.send_message(conn, 10, "hi", sender_id=1, sender_type="student")
        assert store.messages == []
        assert conn.ws.sent_texts == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, chat):
        conn = connect(chat, 1, "student")
        with pytest.raises(MissingFields):
            await chat.send_message(conn, 10, "", sender_id=1, sender_type="student")
        with pytest.raises(MissingFields):
            await chat.send_message(conn, None, "hi", sender_id=1, sender_type="student")

    @pytest.mark.asyncio
    async def test_spoofed_sender_rejected(self, chat, store):
        conn = connect(chat, 1, "student")
        with pytest.raises(IdentityMismatch):
            await chat.send_message(conn, 10, "hi", sender_id=2, sender_type="faculty")
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_broadcast_to_connected_members(self, chat, store):
        student = connect(chat, 1, "student")
        faculty = connect(chat, 2, "faculty")
        await chat.join_room(student, 1, room_id=10)
        await chat.join_room(faculty, 2, room_id=10)

        payload = await chat.send_message(faculty, 10, "Office hours at 3", kind="text", sender_id=2, sender_type="faculty")

        frames = student.ws.frames()
        assert len(frames) == 1
        assert frames[0] == payload
        assert payload["type"] == "new_message"
        assert payload["id"] == 1
        assert payload["room_id"] == 10
        assert payload["sender_name"] == "Dr. Faye"
        assert payload["is_read"] is False
        assert payload["message_type"] == "text"
        assert faculty.ws.frames() == [payload]  # sender's own connection gets it too
        assert store.touched == [10]

    @pytest.mark.asyncio
    async def test_message_type_defaults_to_text(self, chat, store):
        student = connect(chat, 1, "student")
        payload = await chat.send_message(student, 10, "hello", sender_id=1, sender_type="student")
        assert payload["message_type"] == "text"
        assert store.messages[0].message_type == "text"

    @pytest.mark.asyncio
    async def test_offline_member_not_delivered(self, chat):
        student = connect(chat, 1, "student")
        faculty = connect(chat, 2, "faculty")
        await chat.join_room(student, 1, room_id=10)
        await chat.join_room(faculty, 2, room_id=10)
        chat.disconnect(student)

        await chat.send_message(faculty, 10, "anyone?", sender_id=2, sender_type="faculty")
        assert student.ws.sent_texts == []

    @pytest.mark.asyncio
    async def test_non_participant_cannot_post(self, chat, store):
        outsider = connect(chat, 3, "faculty")
        with pytest.raises(IdentityMismatch):
            await chat.send_message(outsider, 10, "hi", sender_id=3, sender_type="faculty")
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_store_failure_propagates_without_broadcast(self, chat, store):
        student = connect(chat, 1, "student")
        await chat.join_room(student, 1, room_id=10)
        store.fail = True
        with pytest.raises(StoreUnavailable):
            await chat.send_message(student, 10, "hi", sender_id=1, sender_type="student")
        assert student.ws.sent_texts == []

    @pytest.mark.asyncio
    async def test_messages_broadcast_in_send_order(self, chat):
        student = connect(chat, 1, "student")
        faculty = connect(chat, 2, "faculty")
        await chat.join_room(student, 1, room_id=10)
        for text in ("one", "two", "three"):
            await chat.send_message(faculty, 10, text, sender_id=2, sender_type="faculty")
        assert [f["message"] for f in student.ws.frames()] == ["one", "two", "three"]


    @pytest.mark.asyncio
    async def test_unknown_message_type_rejected(self, chat, store):
        student = connect(chat, 1, "student")
        with pytest.raises(InvalidField) as exc:
            await chat.send_message(student, 10, "hi", kind="x" * 40, sender_id=1, sender_type="student")
        assert exc.value.status_code == 400
        assert store.messages == []
        assert student.ws.sent_texts == []

    @pytest.mark.asyncio
    async def test_image_message_type_kept(self, chat, store):
        student = connect(chat, 1, "student")
        payload = await chat.send_message(student, 10, "https://cdn/x.png", kind="image", sender_id=1, sender_type="student")
        assert payload["message_type"] == "image"


class TestPostMessage:
    @pytest.mark.asyncio
    async def test_first_message_creates_room_and_reaches_joined_peer(self, chat, store):
        student = Identity(1, "student")
        first = await chat.post_message(student, 3, "Can we meet?")
        assert len(store.rooms) == 2
        room_id = first["room_id"]

        faculty = connect(chat, 3, "faculty")
        await chat.join_room(faculty, 3, room_id=room_id)
        second = await chat.post_message(student, 3, "Tomorrow works")
        assert second["room_id"] == room_id
        assert len(store.rooms) == 2
        assert [f["message"] for f in faculty.ws.frames()] == ["Tomorrow works"]

    @pytest.mark.asyncio
    async def test_requires_peer_and_body(self, chat, store):
        with pytest.raises(MissingFields):
            await chat.post_message(Identity(1, "student"), None, "hi")
        with pytest.raises(MissingFields):
            await chat.post_message(Identity(1, "student"), 3, "   ")
        assert store.messages == []

    @pytest.mark.asyncio
    async def test_unknown_peer(self, chat):
        with pytest.raises(RoomNotFound):
            await chat.post_message(Identity(1, "student"), 77, "hi")

    @pytest.mark.asyncio
    async def test_only_faculty_broadcast(self, chat):
        with pytest.raises(IdentityMismatch):
            await chat.broadcast_to_students(Identity(1, "student"), "hello all")


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_removes_record_and_membership(self, chat):
        conn = connect(chat, 1, "student")
        await chat.join_room(conn, 1, room_id=10)
        chat.disconnect(conn)
        assert Identity(1, "student") not in chat.registry
        assert chat.rooms.members(10) == set()
        assert conn.identity is None

    def test_disconnect_unauthenticated_is_noop(self, chat):
        chat.disconnect(ChatConnection(MockWebSocket()))
        assert len(chat.registry) == 0

    @pytest.mark.asyncio
    async def test_superseded_connection_is_unauthenticated(self, chat):
        old = connect(chat, 1, "student")
        connect(chat, 1, "student")
        with pytest.raises(Unauthenticated):
            await chat.join_room(old, 1, room_id=10)
