# app/api/v1/routers/chat.py
from fastapi import APIRouter, Depends, Path, Query

from app.api.v1.deps import get_chat, get_directory, require_chat_participant, require_faculty
from app.core.accounts import AccountDirectory, AccountRef
from app.core.chat import MAX_ID, ChatCoordinator
from app.core.chat_store import PEER_ROLE, isoformat, message_row
from app.core.errors import IdentityMismatch, MissingFields, RoomNotFound
from app.core.pubsub import Identity
from app.models.chat import ChatMessage, ChatRoom
from app.schemas.chat import BroadcastIn, EditMessageIn, RoomRequestIn, SendMessageIn

router = APIRouter(prefix="/chat", tags=["chat"])

def _identity(account: AccountRef) -> Identity:
    return Identity(account.id, account.role)

async def _room_of(chat: ChatCoordinator, room_id: int, account: AccountRef) -> ChatRoom:
    room = await chat.store.get_room(room_id)
    if room is None:
        raise RoomNotFound()
    if room.participant_id(account.role) != account.id:
        raise IdentityMismatch("Access denied to this chat room")
    return room

async def _own_faculty_message(chat: ChatCoordinator, message_id: int, account: AccountRef) -> ChatMessage:
    msg = await chat.store.get_message(message_id)
    if msg is None:
        raise RoomNotFound("Message not found")
    if msg.sender_type != "faculty" or msg.sender_id != account.id:
        raise IdentityMismatch("You can only change your own messages")
    return msg

@router.get("/peers")
async def list_peers(
    account: AccountRef = Depends(require_chat_participant),
    directory: AccountDirectory = Depends(get_directory),
):
    """
    Accounts the caller can start a chat with, ordered by name:
    faculty for students, students for faculty.
    """
    peer_role = PEER_ROLE[account.role]
    peers = await directory.list_role(peer_role)
    label = "department" if peer_role == "faculty" else "branch"
    items = [{"id": p.id, "name": p.name, "email": p.email, label: p.record.branch} for p in peers]
    return {"success": True, "data": {"items": items}}

@router.get("/rooms")
async def list_rooms(
    account: AccountRef = Depends(require_chat_participant),
    chat: ChatCoordinator = Depends(get_chat),
):
    """
    List the caller's chat rooms, most recently active first.

    Each item carries the peer's id/name/department/email, the last message
    and its time, and ``unread_count`` (peer messages not yet read).
    """
    rooms = await chat.store.list_rooms(account.id, account.role)
    return {"success": True, "data": {"items": rooms}}

@router.post("/room")
async def get_or_create_room(
    body: RoomRequestIn,
    account: AccountRef = Depends(require_chat_participant),
    chat: ChatCoordinator = Depends(get_chat),
):
    """
    Return the room between the caller and ``peerId``, creating it on first use.

    Students pass a faculty id, faculty pass a student id. Repeated calls for
    the same pair return the same room.

    Error codes:
        - missing_fields: peerId absent
        - room_not_found (404): the peer does not exist
    """
    if body.peerId is None:
        raise MissingFields("peerId is required")
    room, peer, created = await chat.open_room(_identity(account), body.peerId)
    return {"success": True, "data": {
        "room_id": room.id,
        "student_id": room.student_id,
        "faculty_id": room.faculty_id,
        f"{peer.role}_name": peer.name,
        "department": getattr(peer.record, "branch", None),
        f"{peer.role}_email": peer.email,
        "created_at": isoformat(room.created_at),
        "created": created,
    }}

@router.post("/messages")
async def send_message(
    body: SendMessageIn,
    account: AccountRef = Depends(require_chat_participant),
    chat: ChatCoordinator = Depends(get_chat),
):
    """
    Send a message to ``peerId`` over REST.

    The pair's room is created by the first message. Members connected to the
    room over the socket receive the usual ``new_message`` broadcast.

    Error codes:
        - missing_fields: peerId or message absent
        - invalid_field: unsupported messageType
        - room_not_found (404): the peer does not exist
    """
    payload = await chat.post_message(_identity(account), body.peerId, body.message, body.messageType)
    return {"success": True, "data": {
        "message_id": payload["id"],
        "room_id": payload["room_id"],
        "message": payload,
    }}

@router.post("/broadcast")
async def broadcast(
    body: BroadcastIn,
    account: AccountRef = Depends(require_faculty),
    chat: ChatCoordinator = Depends(get_chat),
):
    """
    Faculty only: post one message into the caller's room with every student.
    Rooms are created as needed; per-student failures are skipped and counted.
    """
    sent, total = await chat.broadcast_to_students(_identity(account), body.message, body.messageType)
    return {"success": True, "data": {"successCount": sent, "totalStudents": total}}

@router.get("/rooms/{room_id}/messages")
async def list_messages(
    room_id: int = Path(..., ge=1, le=MAX_ID),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    account: AccountRef = Depends(require_chat_participant),
    chat: ChatCoordinator = Depends(get_chat),
    directory: AccountDirectory = Depends(get_directory),
):
    """
    Page through a room's messages (oldest first within the page).

    Opening the conversation marks every message the peer sent in this room
    as read; the returned rows show the state before that update.
    """
    room = await _room_of(chat, room_id, account)
    rows = await chat.store.list_messages(room.id, offset=(page - 1) * limit, limit=limit)

    names: dict[tuple[int, str], str] = {}
    items = []
    for m in rows:
        key = (m.sender_id, m.sender_type)
        if key not in names:
            names[key] = await directory.display_name(*key)
        items.append(message_row(m, sender_name=names[key]))

    await chat.store.mark_room_read(room.id, account.role)
    return {"success": True, "data": {"items": items, "page": page, "limit": limit}}

@router.put("/messages/{message_id}/read")
async def mark_message_read(
    message_id: int = Path(..., ge=1, le=MAX_ID),
    account: AccountRef = Depends(require_chat_participant),
    chat: ChatCoordinator = Depends(get_chat),
):
    """
    Mark a single received message as read.

    Error codes:
        - room_not_found (404): unknown message
        - identity_mismatch (403): caller is not in the room or sent the message
    """
    msg = await chat.store.get_message(message_id)
    if msg is None:
        raise RoomNotFound("Message not found")
    await _room_of(chat, msg.room_id, account)
    if msg.sender_type == account.role and msg.sender_id == account.id:
        raise IdentityMismatch("Cannot mark your own message as read")
    await chat.store.mark_message_read(msg.id)
    return {"success": True, "data": {"ok": True}}

@router.put("/messages/{message_id}")
async def edit_message(
    body: EditMessageIn,
    message_id: int = Path(..., ge=1, le=MAX_ID),
    account: AccountRef = Depends(require_faculty),
    chat: ChatCoordinator = Depends(get_chat),
):
    """Faculty only: replace the text of one of the caller's messages."""
    text = (body.message or "").strip()
    if not text:
        raise MissingFields("Message content is required")
    msg = await _own_faculty_message(chat, message_id, account)
    await chat.store.update_message(msg.id, text)
    return {"success": True, "message": "Message updated successfully"}

@router.delete("/messages/{message_id}")
async def delete_message(
    message_id: int = Path(..., ge=1, le=MAX_ID),
    account: AccountRef = Depends(require_faculty),
    chat: ChatCoordinator = Depends(get_chat),
):
    """Faculty only: delete one of the caller's messages."""
    msg = await _own_faculty_message(chat, message_id, account)
    await chat.store.delete_message(msg.id)
    return {"success": True, "message": "Message deleted successfully"}
