# app/core/accounts.py
"""
Account directory over the student, faculty and admin tables.

Emails may in principle exist in more than one table; lookups resolve them with
a fixed precedence (student, then faculty, then admin) so the same email always
maps to the same owning account.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Type

from tortoise.exceptions import BaseORMException

from app.core.errors import StoreUnavailable
from app.models.user import Account, Admin, Faculty, Student

logger = logging.getLogger(__name__)

ROLE_MODELS: dict[str, Type[Account]] = {
    "student": Student,
    "faculty": Faculty,
    "admin": Admin,
}
PRECEDENCE = ("student", "faculty", "admin")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class AccountRef:
    """A located account together with the role its table implies."""
    role: str
    record: Account

    @property
    def id(self) -> int:
        return self.record.id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def email(self) -> str:
        return self.record.email


class AccountDirectory:
    """Role-polymorphic access to the credential tables."""

    def __init__(self, precedence: tuple[str, ...] = PRECEDENCE):
        self.precedence = precedence

    async def find_by_email(self, email: str) -> Optional[AccountRef]:
        email = normalize_email(email)
        try:
            for role in self.precedence:
                row = await ROLE_MODELS[role].get_or_none(email=email)
                if row is not None:
                    return AccountRef(role, row)
        except BaseORMException as e:
            logger.error("[accounts] lookup failed for %s: %r", email, e)
            raise StoreUnavailable(details=str(e))
        return None

    async def get(self, user_id: int, role: str) -> Optional[AccountRef]:
        model = ROLE_MODELS.get(role)
        if model is None:
            return None
        try:
            row = await model.get_or_none(id=user_id)
        except BaseORMException as e:
            logger.error("[accounts] lookup failed for %s %s: %r", role, user_id, e)
            raise StoreUnavailable(details=str(e))
        return AccountRef(role, row) if row else None

    async def list_role(self, role: str) -> list[AccountRef]:
        """Every account in the ``role`` table, ordered by name."""
        try:
            rows = await ROLE_MODELS[role].all().order_by("name", "id")
        except BaseORMException as e:
            logger.error("[accounts] listing %s failed: %r", role, e)
            raise StoreUnavailable(details=str(e))
        return [AccountRef(role, row) for row in rows]

    async def update_password(self, role: str, email: str, password_hash: str) -> int:
        """Store a new hash on the row for ``email`` in the ``role`` table."""
        try:
            return await ROLE_MODELS[role].filter(email=normalize_email(email)).update(password_hash=password_hash)
        except BaseORMException as e:
            logger.error("[accounts] password update failed for %s: %r", email, e)
            raise StoreUnavailable(details=str(e))

    async def display_name(self, user_id: int, role: str) -> str:
        """Name shown next to chat messages; never fails."""
        try:
            ref = await self.get(user_id, role)
        except StoreUnavailable:
            return "Unknown"
        return ref.name if ref else "Unknown"
