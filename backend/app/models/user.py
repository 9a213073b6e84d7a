# app/models/user.py
"""
Database models for the three account kinds.
Students, faculty and admins live in separate tables with independent integer
ids, so an account is identified by the (id, role) pair everywhere else.
"""
from tortoise import fields, models

class Account(models.Model):
    """
    Shared columns for every account table.

    Security:
    - Password is stored as a hash (never store plain text passwords)
    - Email is stored lowercased and trimmed; it is the recovery key
    """
    id = fields.IntField(pk=True)
    name = fields.CharField(max_length=128)
    email = fields.CharField(max_length=256, unique=True, index=True)  # Normalized (lowercase) email
    password_hash = fields.CharField(max_length=255)  # argon2 hash
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        abstract = True

class Student(Account):
    """Student account; may chat with any faculty member."""
    branch = fields.CharField(max_length=64, null=True)

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "students"

class Faculty(Account):
    """Faculty account; may chat with any student."""
    branch = fields.CharField(max_length=64, null=True)  # Department

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "faculty"

class Admin(Account):
    """Administrator account; no chat participation."""

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "admin"
