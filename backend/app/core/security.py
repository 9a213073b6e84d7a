# app/core/security.py
"""
Security module for authentication and authorization.
Handles password hashing and JWT token creation/validation.
"""
import datetime as dt
import jwt  # PyJWT
from passlib.context import CryptContext

from app.config import settings

# Password hashing context
# Argon2 is a modern, secure password hashing algorithm
pwd_context = CryptContext(
    schemes=["argon2"],  # Use Argon2 for password hashing
    deprecated="auto",   # Automatically handle deprecated schemes
)

# JWT configuration
JWT_SECRET = settings.jwt_secret
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes
JWT_ALG = "HS256"  # JWT signing algorithm (HMAC SHA-256)

def hash_password(plain: str) -> str:
    """
    Hash a plain text password using Argon2.

    Args:
        plain: Plain text password to hash

    Returns:
        Hashed password string (safe to store in database)
    """
    return pwd_context.hash(plain)

def verify_password(plain: str, hashed: str) -> bool:
    """
    Verify a plain text password against a hashed password.

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain, hashed)

def create_access_token(user_id: int, role: str) -> str:
    """
    Create a JWT access token for an account.

    The token carries the account id and its role ("student", "faculty" or
    "admin"); ids are integers per table, so the pair is the identity.

    Token payload includes:
        - sub: Subject (account id, stringified as JWT requires)
        - role: Account role
        - iat: Issued at timestamp
        - exp: Expiration timestamp
    """
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + dt.timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)

def decode_access_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or malformed
    """
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])

def identity_from_token(token: str) -> tuple[int, str]:
    """
    Decode a token and return its ``(user_id, role)`` pair.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired or lacks claims
    """
    payload = decode_access_token(token)
    try:
        return int(payload["sub"]), str(payload["role"])
    except (KeyError, TypeError, ValueError):
        raise jwt.InvalidTokenError("token is missing identity claims")
