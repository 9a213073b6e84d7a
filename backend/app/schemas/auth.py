# app/schemas/auth.py
"""
Pydantic schemas for authentication and password recovery endpoints.
Fields are optional on purpose: missing values are reported as a typed
``missing_fields`` error (400) instead of a generic validation error.
"""
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict

class RegisterIn(BaseModel):
    """Self-registration for students and faculty (admins are bootstrapped)."""
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Literal["student", "faculty"] = "student"
    branch: Optional[str] = None  # Student branch / faculty department

class LoginIn(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

class UserOut(BaseModel):
    """
    Account information returned in authentication responses.
    Contains basic details without sensitive information.
    """
    id: int
    name: str
    email: str
    role: str  # "student" | "faculty" | "admin"

class ForgotPasswordIn(BaseModel):
    email: Optional[str] = None

class VerifyOtpIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)  # clients may send the OTP as a number

    email: Optional[str] = None
    otp: Optional[str] = None

class ResetPasswordIn(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    otp: Optional[str] = None
    newPassword: Optional[str] = None
