# app/api/v1/routers/ws_chat.py
import json
import logging

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from app.core.chat import ChatCoordinator
from app.core.errors import ServiceError, StoreUnavailable
from app.core.pubsub import ChatConnection

router = APIRouter()
logger = logging.getLogger(__name__)

async def _dispatch(chat: ChatCoordinator, conn: ChatConnection, msg: dict) -> None:
    kind = msg.get("type")
    if kind == "join":
        identity = chat.authenticate(conn, msg.get("userId"), msg.get("userType"), msg.get("token"))
        await conn.send({
            "type": "joined",
            "message": "Successfully joined",
            "userId": identity.user_id,
            "userType": identity.role,
        })
    elif kind == "join_chat":
        room_id = await chat.join_room(conn, msg.get("userId"), room_id=msg.get("roomId"), peer_id=msg.get("peerId"))
        await conn.send({"type": "chat_joined", "roomId": room_id})
    elif kind == "leave_chat":
        chat.leave_room(conn, msg.get("roomId"))
    elif kind == "send_message":
        await chat.send_message(
            conn,
            msg.get("roomId"),
            msg.get("message"),
            kind=msg.get("messageType"),
            sender_id=msg.get("senderId"),
            sender_type=msg.get("senderType"),
        )
    else:
        await conn.send({"type": "error", "message": f"Unknown event: {kind}"})

@router.websocket("/ws/chat")
async def ws_chat(ws: WebSocket):
    """
    WebSocket endpoint for student-faculty chat.

    Message flow (JSON text frames, ``type`` selects the event):
    1. Client sends: {"type": "join", "userId", "userType", "token"}
       Server replies: {"type": "joined", "userId", "userType"}
    2. Client sends: {"type": "join_chat", "userId", "roomId"} (or "peerId"
       to open the pair's room); server replies {"type": "chat_joined", "roomId"}
    3. Client sends: {"type": "send_message", "roomId", "senderId",
       "senderType", "message", "messageType"}; every connected room member
       receives {"type": "new_message", ...} including the sender.

    Failures are answered with {"type": "error", "message"[, "details"]} on
    this connection only; the connection stays open.
    """
    chat: ChatCoordinator = ws.app.state.chat
    await ws.accept()
    conn = ChatConnection(ws)
    try:
        while True:
            raw = await ws.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await conn.send({"type": "error", "message": "Malformed message"})
                continue
            if not isinstance(msg, dict):
                await conn.send({"type": "error", "message": "Malformed message"})
                continue
            try:
                await _dispatch(chat, conn, msg)
            except StoreUnavailable as e:
                label = "Failed to send message" if msg.get("type") == "send_message" else e.message
                await conn.send({"type": "error", "message": label, "details": e.details or e.message})
            except ServiceError as e:
                await conn.send({"type": "error", "message": e.message})
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.exception("[ws_chat] %s event failed: %r", msg.get("type"), e)
                await conn.send({"type": "error", "message": "Failed to process event"})
    except WebSocketDisconnect:
        logger.debug("[ws_chat] client closed")
    finally:
        chat.disconnect(conn)
