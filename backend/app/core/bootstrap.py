# app/core/bootstrap.py
"""
Bootstrap module for application initialization.
Creates the default admin account on first startup.
"""
import logging
from app.config import settings
from app.core.accounts import normalize_email
from app.core.security import hash_password
from app.models.user import Admin

logger = logging.getLogger("uvicorn.error")

async def ensure_default_admin() -> None:
    """
    If no admin exists in the database, create one from settings.
    Only takes effect under the following conditions:
      - Currently no row in the admin table
      - And ADMIN_PASSWORD is set (to avoid using default weak password)
    Environment variables:
      ADMIN_NAME     (default: "Administrator")
      ADMIN_EMAIL    (default: "admin@university.local")
      ADMIN_PASSWORD (required, otherwise won't create)
    """
    if await Admin.exists():
        return

    if not settings.admin_password:
        logger.warning("[bootstrap] No admin present, but ADMIN_PASSWORD not set -> skip creating default admin.")
        return

    a = await Admin.create(
        name=settings.admin_name,
        email=normalize_email(settings.admin_email),
        password_hash=hash_password(settings.admin_password),
    )
    logger.warning("[bootstrap] Created default admin -> email=%s id=%s", a.email, a.id)
