# app/api/v1/routers/auth.py
from fastapi import APIRouter, Depends, status
from tortoise.exceptions import BaseORMException, IntegrityError

from app.api.v1.deps import get_current_account, get_directory, get_recovery
from app.core.accounts import ROLE_MODELS, AccountDirectory, AccountRef, normalize_email
from app.core.errors import EmailTaken, InvalidCredentials, MissingFields, StoreUnavailable, WeakPassword
from app.core.recovery import MIN_PASSWORD_LENGTH, RecoveryService
from app.core.security import create_access_token, hash_password, verify_password
from app.schemas.auth import ForgotPasswordIn, LoginIn, RegisterIn, ResetPasswordIn, UserOut, VerifyOtpIn

router = APIRouter(prefix="/auth", tags=["auth"])

def _user_out(account: AccountRef) -> dict:
    return UserOut(id=account.id, name=account.name, email=account.email, role=account.role).model_dump()

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterIn, directory: AccountDirectory = Depends(get_directory)):
    """
    Register a new student or faculty account.

    The email is normalized (trimmed, lowercased) and must not be used by any
    account table. The password is hashed before storage.

    Returns:
        dict: ``{"success": True, "data": {id, name, email, role}}``

    Error codes:
        - missing_fields: name/email/password absent
        - weak_password: password shorter than 8 characters
        - email_taken: email already registered in any table
    """
    email = normalize_email(body.email)
    if not body.name or not email or not body.password:
        raise MissingFields("name, email and password are required")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword()
    if await directory.find_by_email(email):
        raise EmailTaken()

    model = ROLE_MODELS[body.role]
    try:
        row = await model.create(
            name=body.name.strip(),
            email=email,
            password_hash=hash_password(body.password),
            branch=body.branch,
        )
    except IntegrityError:
        raise EmailTaken()
    except BaseORMException as e:
        raise StoreUnavailable(details=str(e))
    return {"success": True, "data": _user_out(AccountRef(body.role, row))}

@router.post("/login")
async def login(payload: LoginIn, directory: AccountDirectory = Depends(get_directory)):
    """
    Authenticate against the account tables and issue an access token.

    The email is resolved with the directory precedence (student, faculty,
    admin); the token carries the account id and the resolved role.

    Returns:
        dict: ``{"success": True, "data": {"user": {...}, "accessToken": str}}``

    Error codes:
        - missing_fields: email/password absent
        - invalid_credentials (401): unknown email or wrong password
    """
    if not payload.email or not payload.password:
        raise MissingFields("Email and password are required")
    account = await directory.find_by_email(payload.email)
    if not account or not verify_password(payload.password, account.record.password_hash):
        raise InvalidCredentials()
    token = create_access_token(account.id, account.role)
    return {"success": True, "data": {"user": _user_out(account), "accessToken": token}}

@router.get("/me")
async def me(account: AccountRef = Depends(get_current_account)):
    """
    Get the authenticated account.

    Raises:
        HTTPException (401): If the caller is not authenticated
    """
    data = _user_out(account)
    data["branch"] = getattr(account.record, "branch", None)
    return {"success": True, "data": data}

# ---------- password recovery ----------

@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordIn, recovery: RecoveryService = Depends(get_recovery)):
    """
    Issue a 6-digit OTP for the account owning ``email`` and send it by email.

    A new request replaces any earlier code for the same email. Codes expire
    after 10 minutes.

    Error codes:
        - missing_fields (400)
        - email_not_found (404)
        - store_unavailable (500): lookup or email delivery failed
    """
    await recovery.request_recovery(body.email or "")
    return {"success": True, "message": "OTP sent to your email address successfully"}

@router.post("/verify-otp")
async def verify_otp(body: VerifyOtpIn, recovery: RecoveryService = Depends(get_recovery)):
    """
    Check a submitted OTP. Three wrong codes invalidate the request.

    Error codes:
        - otp_not_found / otp_expired / invalid_otp (400)
        - too_many_attempts (429)
    """
    recovery.verify_code(body.email or "", body.otp or "")
    return {"success": True, "message": "OTP verified successfully"}

@router.post("/reset-password")
async def reset_password(body: ResetPasswordIn, recovery: RecoveryService = Depends(get_recovery)):
    """
    Set a new password using a verified OTP. The OTP is consumed on success.

    Error codes:
        - otp_not_found / otp_expired / otp_not_verified / weak_password (400)
    """
    await recovery.reset_password(body.email or "", body.otp or "", body.newPassword or "")
    return {"success": True, "message": "Password reset successfully"}
