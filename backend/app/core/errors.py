# app/core/errors.py
"""
Typed failures raised by the recovery flow, the chat coordinator and the
account directory.

Every failure carries a stable ``code`` (returned to clients), a human readable
``message`` and the HTTP status used when it reaches a REST handler. Socket
handlers only use ``code``/``message`` and reply to the originating connection.
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    code = "service_error"
    message = "Request failed"
    status_code = 400

    def __init__(self, message: str | None = None, details: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# ----- authentication / authorization -----
class AuthRequired(ServiceError):
    code = "auth_required"
    message = "No token provided"
    status_code = 401

class AuthInvalid(ServiceError):
    code = "auth_invalid"
    message = "Invalid authentication"
    status_code = 401

class Unauthenticated(ServiceError):
    code = "unauthenticated"
    message = "Unauthorized"
    status_code = 401

class IdentityMismatch(ServiceError):
    code = "identity_mismatch"
    message = "Unauthorized"
    status_code = 403

class InvalidCredentials(ServiceError):
    code = "invalid_credentials"
    message = "Invalid credentials"
    status_code = 401


# ----- password recovery -----
class AccountNotFound(ServiceError):
    code = "email_not_found"
    message = "No account found with this email address"
    status_code = 404

class NoActiveRequest(ServiceError):
    code = "otp_not_found"
    message = "OTP not found or expired. Please start the process again."

class Expired(ServiceError):
    code = "otp_expired"
    message = "OTP has expired. Please start the process again."

class TooManyAttempts(ServiceError):
    code = "too_many_attempts"
    message = "Too many failed attempts. Please request a new OTP."
    status_code = 429

class InvalidCode(ServiceError):
    code = "invalid_otp"
    message = "Please reenter correct OTP."

class NotVerified(ServiceError):
    code = "otp_not_verified"
    message = "Invalid or unverified OTP. Please verify your OTP first."

class WeakPassword(ServiceError):
    code = "weak_password"
    message = "Password must be at least 8 characters long"


# ----- input / resources -----
class MissingFields(ServiceError):
    code = "missing_fields"
    message = "Missing required fields"

class InvalidField(ServiceError):
    code = "invalid_field"
    message = "Invalid field value"

class EmailTaken(ServiceError):
    code = "email_taken"
    message = "Email already registered"

class RoomNotFound(ServiceError):
    code = "room_not_found"
    message = "Chat room not found"
    status_code = 404


# ----- storage and delivery -----
class StoreUnavailable(ServiceError):
    code = "store_unavailable"
    message = "Service temporarily unavailable. Please try again."
    status_code = 500


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError as ``{success, error, message}`` with its status."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
