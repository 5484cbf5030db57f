"""
Security utilities: password hashing, JWT tokens, and one-time codes.

This module centralizes all cryptographic operations so they're easy to
audit and update. Three concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - We use passlib's CryptContext for safe, high-level Argon2 operations

2. JWT TOKENS (JSON Web Tokens)
   - After login, the user receives a signed JWT containing their user ID
   - The token is signed with SECRET_KEY using HS256 (HMAC-SHA256)
   - Tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES (default: 30 min)

3. ONE-TIME VERIFICATION CODES
   - 6-digit numeric codes in the range 100000-999999 (no leading zero,
     so the code reads the same in every display)
   - Drawn from the `secrets` CSPRNG, independent of any account data;
     uniqueness across accounts is not needed because a code is only ever
     compared against the row it was issued for
   - Expiry is an absolute UTC instant, never a local wall-clock value
"""

import secrets
from datetime import datetime, timedelta, timezone

from jose import jwt
from passlib.context import CryptContext

from app.config import settings


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# If we ever need to migrate from argon2 to a future scheme, passlib handles
# the transition automatically: old hashes are verified with the original
# scheme, and new passwords use the new one ("deprecated='auto'").
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password using Argon2id."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a stored Argon2 hash.

    This is a constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    The token payload contains:
      - "sub": The subject (user ID as string) — standard JWT claim
      - "exp": Expiration timestamp — after this, the token is rejected

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 3. One-time verification codes
# ---------------------------------------------------------------------------

VERIFICATION_CODE_MIN = 100000
VERIFICATION_CODE_MAX = 999999


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Interpret a stored timestamp as an absolute UTC instant.

    SQLite hands DateTime(timezone=True) columns back as naive datetimes
    holding the UTC value we wrote; PostgreSQL returns aware ones. Either
    way the result is aware and safe to compare with utcnow().
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_verification_code() -> str:
    """Return a random 6-digit code between 100000 and 999999 inclusive."""
    span = VERIFICATION_CODE_MAX - VERIFICATION_CODE_MIN + 1
    return str(VERIFICATION_CODE_MIN + secrets.randbelow(span))


def verification_code_expires_at(
    ttl_minutes: int = 15,
    now: datetime | None = None,
) -> datetime:
    """
    Absolute expiry instant for a code issued now.

    The clock is read once; pass `now` to pin it (tests, batch issuance).
    """
    issued_at = as_utc(now) if now is not None else utcnow()
    return issued_at + timedelta(minutes=ttl_minutes)


def is_code_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """
    True if `now` is strictly after `expires_at`.

    A missing expiry counts as expired; a code without a deadline is never
    accepted.
    """
    if expires_at is None:
        return True
    current = as_utc(now) if now is not None else utcnow()
    return current > as_utc(expires_at)
