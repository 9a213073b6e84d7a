# app/schemas/chat.py
"""
Pydantic schemas for chat REST endpoints.
Fields are optional so that absent values surface as ``missing_fields``.
"""
from typing import Optional
from pydantic import BaseModel

class RoomRequestIn(BaseModel):
    """
    Get-or-create the room with a peer.
    ``peerId`` is a faculty id for students and a student id for faculty.
    """
    peerId: Optional[int] = None

class SendMessageIn(BaseModel):
    """Message to a peer; the pair's room is created on the first one."""
    peerId: Optional[int] = None
    message: Optional[str] = None
    messageType: Optional[str] = None  # "text" (default) | "image" | "file"

class BroadcastIn(BaseModel):
    message: Optional[str] = None
    messageType: Optional[str] = None

class EditMessageIn(BaseModel):
    message: Optional[str] = None
