# app/models/__init__.py
"""
Database models module initialization.
Exports all database models for convenient imports throughout the application.

Models exported:
- Student, Faculty, Admin: Account tables (one per role)
- ChatRoom: Student-faculty conversation context
- ChatMessage: Persisted chat message (belongs to ChatRoom)
"""
from .user import Student, Faculty, Admin
from .chat import ChatRoom, ChatMessage
