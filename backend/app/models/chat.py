# app/models/chat.py
"""
Database models for student-faculty chat.
A room is scoped to exactly one (student, faculty) pair and holds the
persisted message history. Faculty may edit or delete their own messages;
nothing else removes history.
"""
from tortoise import fields, models

class ChatRoom(models.Model):
    """
    Conversation context between one student and one faculty member.

    Relationships:
    - Belongs to a Student and a Faculty (many-to-one each)
    - Has many ChatMessages (via related_name="messages")
    """
    id = fields.IntField(pk=True)
    student = fields.ForeignKeyField("models.Student", related_name="chat_rooms", on_delete=fields.CASCADE)
    faculty = fields.ForeignKeyField("models.Faculty", related_name="chat_rooms", on_delete=fields.CASCADE)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)  # Bumped on every new message

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "chat_rooms"
        unique_together = (("student", "faculty"),)  # At most one room per pair

    def participant_id(self, role: str) -> int | None:
        """Return the id of the participant holding ``role`` in this room."""
        if role == "student":
            return self.student_id
        if role == "faculty":
            return self.faculty_id
        return None

class ChatMessage(models.Model):
    """
    A single chat message.
    ``is_read`` flips to True once the recipient opens the conversation.
    """
    id = fields.IntField(pk=True)
    room = fields.ForeignKeyField("models.ChatRoom", related_name="messages", on_delete=fields.CASCADE)
    sender_id = fields.IntField()
    sender_type = fields.CharField(max_length=16)  # "student" | "faculty"
    message = fields.TextField()
    message_type = fields.CharField(max_length=16, default="text")
    is_read = fields.BooleanField(default=False)
    edited = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(null=True)  # Set when the sender edits the text

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "chat_messages"
        ordering = ["created_at", "id"]
