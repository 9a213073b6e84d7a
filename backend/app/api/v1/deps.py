# app/api/v1/deps.py
from fastapi import Depends, Header, HTTPException, Request, status
import jwt

from app.core.accounts import AccountDirectory, AccountRef
from app.core.chat import ChatCoordinator
from app.core.recovery import RecoveryService
from app.core.security import identity_from_token

def get_directory(request: Request) -> AccountDirectory:
    return request.app.state.directory

def get_recovery(request: Request) -> RecoveryService:
    """The app-wide recovery state machine built in ``app.main``."""
    return request.app.state.recovery

def get_chat(request: Request) -> ChatCoordinator:
    """The app-wide chat coordinator built in ``app.main``."""
    return request.app.state.chat

async def get_current_account(
    authorization: str | None = Header(default=None),
    directory: AccountDirectory = Depends(get_directory),
) -> AccountRef:
    """
    FastAPI dependency to get the current authenticated account.

    Extracts the JWT from ``Authorization: Bearer <token>`` and resolves the
    (id, role) it carries against the matching account table.

    Raises:
        HTTPException (401): If no token is provided (AUTH_REQUIRED)
        HTTPException (401): If token is invalid or expired (AUTH_INVALID_TOKEN)
        HTTPException (401): If the account no longer exists (AUTH_USER_NOT_FOUND)
    """
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_REQUIRED")

    try:
        user_id, role = identity_from_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_INVALID_TOKEN")

    account = await directory.get(user_id, role)
    if not account:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_USER_NOT_FOUND")
    return account

async def require_faculty(current: AccountRef = Depends(get_current_account)) -> AccountRef:
    """
    FastAPI dependency restricting an endpoint to faculty accounts.

    Raises:
        HTTPException (403): If the caller is not faculty (FORBIDDEN_FACULTY_ONLY)
    """
    if current.role != "faculty":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN_FACULTY_ONLY")
    return current

async def require_chat_participant(current: AccountRef = Depends(get_current_account)) -> AccountRef:
    """
    FastAPI dependency restricting chat endpoints to students and faculty.

    Raises:
        HTTPException (403): If the caller is an admin (FORBIDDEN_CHAT_ROLE)
    """
    if current.role not in ("student", "faculty"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN_CHAT_ROLE")
    return current
