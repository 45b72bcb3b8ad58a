"""Credential store: password hashing and the four JWT token families.

Access, refresh, password-reset and system-admin tokens share one signing
helper but are not interchangeable: each family has its own ``type`` claim,
refresh and system-admin tokens have their own secrets, and every verifier
rejects tokens of another family even when the signature checks out.
"""

import re
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any, NewType

import bcrypt
import jwt
from jwt import exceptions as jwt_exceptions

from educonnect.core.config import get_settings
from educonnect.core.exceptions import ExpiredTokenError, InvalidTokenError

settings = get_settings()

AccessToken = NewType("AccessToken", str)
RefreshToken = NewType("RefreshToken", str)
PasswordResetToken = NewType("PasswordResetToken", str)
SystemAdminToken = NewType("SystemAdminToken", str)

ACCESS = "access"
REFRESH = "refresh"
PASSWORD_RESET = "password_reset"
SYSTEM_ADMIN = "system_admin"

PASSWORD_RESET_EXPIRE = timedelta(hours=1)
SYSTEM_ADMIN_LEVEL = "super"

# Registered claims added at signing time and stripped again on verification
_RESERVED_CLAIMS = frozenset({"exp", "iat", "type"})

_COMMON_PASSWORDS = frozenset(
    {
        "password",
        "password1",
        "password123",
        "password123!",
        "passw0rd!",
        "qwerty123!",
        "welcome1!",
        "welcome123!",
        "letmein1!",
        "admin123!",
        "changeme1!",
        "school123!",
    }
)


class PasswordValidationError(ValueError):
    """Raised when password validation fails."""


def validate_password(password: str) -> None:
    """Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    - Not a well-known password

    Raises:
        PasswordValidationError: If password does not meet requirements
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r'[!@#$%^&*(),.?":{}|<>_\-]', password):
        raise PasswordValidationError("Password must contain at least one special character")

    if password.lower() in _COMMON_PASSWORDS:
        raise PasswordValidationError(
            "Password is too common. Please choose a more unique password"
        )


def hash_password(password: str) -> str:
    """Hash a password using bcrypt with the configured cost factor."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Verify a password against its hash.

    Returns False for a missing or malformed hash instead of raising.
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def generate_temporary_password() -> str:
    """Temporary credential for invited accounts: 16 hex chars (64 bits)."""
    return secrets.token_hex(8)


def _encode(claims: dict[str, Any], *, secret: str, token_type: str, lifetime: timedelta) -> str:
    reserved = _RESERVED_CLAIMS.intersection(claims)
    if reserved:
        raise ValueError(f"Claims may not set reserved keys: {sorted(reserved)}")

    now = datetime.now(UTC)
    to_encode = dict(claims)
    to_encode.update({"type": token_type, "iat": now, "exp": now + lifetime})
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, *, secret: str, token_type: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt_exceptions.ExpiredSignatureError as exc:
        raise ExpiredTokenError() from exc
    except jwt_exceptions.PyJWTError as exc:
        raise InvalidTokenError() from exc

    if payload.get("type") != token_type:
        raise InvalidTokenError()

    return {key: value for key, value in payload.items() if key not in _RESERVED_CLAIMS}


def create_access_token(claims: dict[str, Any], expires_delta: timedelta | None = None) -> AccessToken:
    """Create a short-lived access token (default lifetime from settings)."""
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return AccessToken(
        _encode(claims, secret=settings.jwt_secret, token_type=ACCESS, lifetime=lifetime)
    )


def create_refresh_token(claims: dict[str, Any], expires_delta: timedelta | None = None) -> RefreshToken:
    """Create a long-lived refresh token signed with the refresh secret."""
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return RefreshToken(
        _encode(claims, secret=settings.refresh_secret, token_type=REFRESH, lifetime=lifetime)
    )


def create_password_reset_token(claims: dict[str, Any]) -> PasswordResetToken:
    """Create a password reset token (fixed one hour lifetime)."""
    return PasswordResetToken(
        _encode(
            claims,
            secret=settings.jwt_secret,
            token_type=PASSWORD_RESET,
            lifetime=PASSWORD_RESET_EXPIRE,
        )
    )


def create_system_admin_token(email: str, expires_delta: timedelta | None = None) -> SystemAdminToken:
    """Create a system admin token with the fixed cross-school claim set."""
    lifetime = expires_delta or timedelta(seconds=settings.system_admin_session_timeout_seconds)
    claims = {
        "email": email,
        "role": SYSTEM_ADMIN,
        "cross_school_access": True,
        "system_admin_level": SYSTEM_ADMIN_LEVEL,
    }
    return SystemAdminToken(
        _encode(
            claims,
            secret=settings.system_admin_secret,
            token_type=SYSTEM_ADMIN,
            lifetime=lifetime,
        )
    )


def verify_access_token(token: str) -> dict[str, Any]:
    """Verify an access token and return its claims.

    Raises:
        ExpiredTokenError: token is past its expiry
        InvalidTokenError: bad signature, malformed, or not an access token
    """
    return _decode(token, secret=settings.jwt_secret, token_type=ACCESS)


def verify_refresh_token(token: str) -> dict[str, Any]:
    return _decode(token, secret=settings.refresh_secret, token_type=REFRESH)


def verify_password_reset_token(token: str) -> dict[str, Any]:
    return _decode(token, secret=settings.jwt_secret, token_type=PASSWORD_RESET)


def verify_system_admin_token(token: str) -> dict[str, Any]:
    """Verify a system admin token.

    A valid signature is not enough: the token must also carry
    ``role=system_admin``, so a user token can never be promoted even if the
    secrets were shared.
    """
    claims = _decode(token, secret=settings.system_admin_secret, token_type=SYSTEM_ADMIN)
    if claims.get("role") != SYSTEM_ADMIN:
        raise InvalidTokenError()
    return claims


def verify_system_admin_credentials(email: str, password: str) -> bool:
    """Check credentials against the configured system admin account."""
    if not settings.system_admin_email or not settings.system_admin_password_hash:
        return False
    if email.strip().lower() != settings.system_admin_email.strip().lower():
        return False
    return verify_password(password, settings.system_admin_password_hash)


def peek_token_type(token: str) -> str | None:
    """Read the ``type`` claim without verifying anything.

    Used only to pick which verifier to run; never trust the result on its own.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt_exceptions.PyJWTError:
        return None
    token_type = payload.get("type")
    return token_type if isinstance(token_type, str) else None
