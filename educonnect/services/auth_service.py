"""Authentication service for login, token refresh, logout and identity.

Three claim shapes exist and each resolves differently:

* system admin: ``{email, role=system_admin, ...}`` signed with its own secret
* school admin: ``{school_id, email, role=admin}`` (no ``user_id``)
* teacher/parent: ``{user_id, school_id, role}``
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.config import get_settings
from educonnect.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenError,
    ValidationError,
)
from educonnect.core.security import (
    SYSTEM_ADMIN,
    PasswordValidationError,
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    create_system_admin_token,
    hash_password,
    peek_token_type,
    validate_password,
    verify_access_token,
    verify_password,
    verify_password_reset_token,
    verify_refresh_token,
    verify_system_admin_credentials,
    verify_system_admin_token,
)
from educonnect.core.structured_logging import log_json
from educonnect.models.enums import IdentityKind, UserRole
from educonnect.models.school import School
from educonnect.models.user import User
from educonnect.services.cache_service import CacheClient
from educonnect.services.notification_service import PASSWORD_RESET, NotificationService

logger = logging.getLogger(__name__)
settings = get_settings()

COMPLETE_REGISTRATION_PATH = "/complete-registration"
FORGOT_PASSWORD_MESSAGE = "If an account exists, a password reset email has been sent."
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH = "Invalid or expired refresh token"


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass
class LoginResult:
    user: User
    school: School
    tokens: TokenPair | None = None
    redirect_to: str | None = None


@dataclass
class Identity:
    kind: IdentityKind
    email: str
    role: str
    user: User | None = None
    school: School | None = None

    @property
    def user_id(self) -> str | None:
        return str(self.user.id) if self.user is not None else None


@dataclass
class SystemAdminSession:
    access_token: str
    expires_in: int
    email: str


def token_claims(user: User) -> dict[str, Any]:
    """Claims for a school account; admins get the school-admin shape."""
    if user.role == UserRole.ADMIN:
        return {"school_id": user.school_id, "email": user.email, "role": UserRole.ADMIN.value}
    return {"user_id": str(user.id), "school_id": user.school_id, "role": user.role.value}


def issue_token_pair(user: User) -> TokenPair:
    claims = token_claims(user)
    return TokenPair(
        access_token=create_access_token(claims),
        refresh_token=create_refresh_token(claims),
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


def _password_fingerprint(password_hash: str) -> str:
    """Ties a reset token to the hash it was issued against, making it single use."""
    return hashlib.sha256(password_hash.encode("utf-8")).hexdigest()[:16]


def session_payload(user: User) -> dict[str, Any]:
    return {
        "user_id": str(user.id),
        "school_id": user.school_id,
        "role": user.role.value,
        "email": user.email,
        "issued_at": datetime.now(UTC).isoformat(),
    }


class AuthService:
    """Service for authentication and session management."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient | None = None,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.cache = cache or CacheClient()
        self.notifier = notifier

    async def _get_school(self, school_id: str) -> School | None:
        result = await self.db.execute(select(School).where(School.school_id == school_id))
        return result.scalar_one_or_none()

    async def _get_user_by_email(self, email: str, school_id: str) -> User | None:
        result = await self.db.execute(
            select(User).where(
                User.email == email.strip().lower(),
                User.school_id == school_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _check_school(school: School, user: User) -> None:
        if school.accepts_logins:
            return
        if user.role == UserRole.ADMIN:
            if not school.is_verified:
                raise AuthorizationError(
                    "School email is not verified. Please verify your email before logging in."
                )
            raise AuthorizationError("School account has been deactivated. Please contact support.")
        raise AuthorizationError(
            "School account is not active. Please contact school administration."
        )

    @staticmethod
    def _deactivated_message(user: User) -> str:
        if user.role == UserRole.ADMIN:
            return "Admin account is deactivated. Please contact support."
        return "User account is deactivated. Please contact school administration."

    async def login(self, email: str, password: str, school_id: str) -> LoginResult:
        """Authenticate a school account.

        Returns tokens, or a ``redirect_to`` signal (and no tokens) for an
        account still on its temporary password.

        Raises:
            AuthenticationError: unknown school, unknown email or wrong password
                (one message for all three)
            AuthorizationError: identity confirmed but the school or account
                is not in a state that allows login
        """
        school = await self._get_school(school_id)
        user = await self._get_user_by_email(email, school_id) if school else None
        if school is None or user is None or not verify_password(password, user.password_hash):
            log_json(logger, logging.INFO, "login_failed", school_id=school_id, email=email)
            raise AuthenticationError(INVALID_CREDENTIALS)

        self._check_school(school, user)

        if user.deactivated_at is not None:
            raise AuthorizationError(self._deactivated_message(user))

        if user.is_temporary_password:
            log_json(logger, logging.INFO, "login_requires_registration", user_id=str(user.id))
            return LoginResult(user=user, school=school, redirect_to=COMPLETE_REGISTRATION_PATH)

        if not user.is_verified:
            if user.role == UserRole.ADMIN:
                raise AuthorizationError("Admin account is not verified")
            raise AuthorizationError("User account is not verified")

        if not user.is_active:
            raise AuthorizationError(self._deactivated_message(user))

        user.last_login_at = datetime.now(UTC)
        await self.db.flush()

        tokens = issue_token_pair(user)
        await self.cache.cache_session(str(user.id), session_payload(user))
        log_json(
            logger,
            logging.INFO,
            "login_succeeded",
            user_id=str(user.id),
            school_id=school_id,
            role=user.role.value,
        )
        return LoginResult(user=user, school=school, tokens=tokens)

    async def _identity_from_claims(self, claims: dict[str, Any]) -> Identity:
        """Re-resolve a school account from verified claims and re-check its state."""
        school_id = claims.get("school_id")
        if not school_id:
            raise AuthenticationError("Invalid token claims")

        if "user_id" in claims:
            try:
                user_id = UUID(str(claims["user_id"]))
            except ValueError as exc:
                raise AuthenticationError("Invalid token claims") from exc
            result = await self.db.execute(
                select(User).where(User.id == user_id, User.school_id == school_id)
            )
            user = result.scalar_one_or_none()
            kind = IdentityKind.USER
        elif claims.get("email") and claims.get("role") == UserRole.ADMIN.value:
            user = await self._get_user_by_email(claims["email"], school_id)
            kind = IdentityKind.SCHOOL_ADMIN
        else:
            raise AuthenticationError("Invalid token claims")

        if (
            user is None
            or user.role.value != claims.get("role")
            or not user.is_active
            or user.deactivated_at is not None
        ):
            raise AuthenticationError("Account not found or inactive")

        school = await self._get_school(school_id)
        if school is None or not school.accepts_logins:
            raise AuthenticationError("Account not found or inactive")

        return Identity(kind=kind, email=user.email, role=user.role.value, user=user, school=school)

    async def resolve_identity(self, token: str) -> Identity:
        """Resolve a bearer access token to the identity behind it.

        Raises:
            TokenError: the token does not verify for its family
            AuthenticationError: the account no longer exists or is inactive
        """
        if peek_token_type(token) == SYSTEM_ADMIN:
            claims = verify_system_admin_token(token)
            return Identity(kind=IdentityKind.SYSTEM_ADMIN, email=claims["email"], role=SYSTEM_ADMIN)

        claims = verify_access_token(token)
        return await self._identity_from_claims(claims)

    async def refresh(self, refresh_token: str, source: str = "cookie") -> tuple[TokenPair, User]:
        """Rotate a refresh token into a new access/refresh pair."""
        try:
            claims = verify_refresh_token(refresh_token)
        except TokenError as exc:
            log_json(
                logger,
                logging.INFO,
                "refresh_failed",
                source=source,
                reason=exc.error,
            )
            raise AuthenticationError(INVALID_REFRESH) from exc

        identity = await self._identity_from_claims(claims)
        tokens = issue_token_pair(identity.user)
        await self.cache.cache_session(identity.user_id, session_payload(identity.user))
        log_json(logger, logging.INFO, "token_refreshed", user_id=identity.user_id, source=source)
        return tokens, identity.user

    async def logout(self, user_id: str | None) -> None:
        """Drop the cached session. Best effort; never raises."""
        if not user_id:
            return
        removed = await self.cache.invalidate_session(user_id)
        log_json(logger, logging.INFO, "logout", user_id=user_id, session_cleared=removed)

    async def logout_token(self, refresh_token: str | None) -> None:
        """Logout driven by the refresh cookie; an unusable token is ignored."""
        if not refresh_token:
            return
        try:
            claims = verify_refresh_token(refresh_token)
        except TokenError:
            log_json(logger, logging.DEBUG, "logout_without_valid_token")
            return
        user_id = claims.get("user_id")
        if user_id is None and claims.get("email"):
            admin = await self._get_user_by_email(claims["email"], claims.get("school_id", ""))
            user_id = str(admin.id) if admin else None
        await self.logout(user_id)

    # System admin

    async def login_system_admin(self, email: str, password: str) -> SystemAdminSession:
        if not verify_system_admin_credentials(email, password):
            log_json(logger, logging.WARNING, "system_admin_login_failed", email=email)
            raise AuthenticationError(INVALID_CREDENTIALS)
        log_json(logger, logging.INFO, "system_admin_login", email=email)
        return SystemAdminSession(
            access_token=create_system_admin_token(settings.system_admin_email),
            expires_in=settings.system_admin_session_timeout_seconds,
            email=settings.system_admin_email,
        )

    async def refresh_system_admin(self, token: str) -> SystemAdminSession:
        try:
            claims = verify_system_admin_token(token)
        except TokenError as exc:
            raise AuthenticationError("Invalid or expired system admin token") from exc

        configured = (settings.system_admin_email or "").strip().lower()
        if not configured or claims.get("email", "").strip().lower() != configured:
            raise AuthenticationError("Invalid or expired system admin token")

        return SystemAdminSession(
            access_token=create_system_admin_token(settings.system_admin_email),
            expires_in=settings.system_admin_session_timeout_seconds,
            email=settings.system_admin_email,
        )

    # Password reset

    async def forgot_password(self, email: str, school_id: str) -> str:
        """Send a reset link if the account exists; the reply never says whether it does."""
        user = await self._get_user_by_email(email, school_id)
        if (
            user is None
            or not user.is_active
            or user.is_temporary_password
            or user.deactivated_at is not None
        ):
            log_json(logger, logging.INFO, "password_reset_skipped", school_id=school_id)
            return FORGOT_PASSWORD_MESSAGE

        school = await self._get_school(school_id)
        token = create_password_reset_token(
            {
                "user_id": str(user.id),
                "school_id": user.school_id,
                "fingerprint": _password_fingerprint(user.password_hash),
            }
        )
        if self.notifier is not None:
            result = await self.notifier.send_templated_invitation(
                PASSWORD_RESET,
                user.email,
                "Reset your EduConnect password",
                {
                    "name": user.full_name,
                    "school_name": school.school_name if school else school_id,
                    "reset_url": f"{settings.frontend_url}/reset-password?token={token}",
                },
            )
            log_json(
                logger,
                logging.INFO,
                "password_reset_requested",
                user_id=str(user.id),
                email_sent=result.success,
            )
        return FORGOT_PASSWORD_MESSAGE

    async def reset_password(self, token: str, new_password: str) -> User:
        try:
            claims = verify_password_reset_token(token)
        except TokenError as exc:
            raise AuthenticationError("Invalid or expired reset token") from exc

        try:
            user_id = UUID(str(claims.get("user_id")))
        except ValueError as exc:
            raise AuthenticationError("Invalid or expired reset token") from exc

        result = await self.db.execute(
            select(User).where(User.id == user_id, User.school_id == claims.get("school_id"))
        )
        user = result.scalar_one_or_none()
        if user is None or claims.get("fingerprint") != _password_fingerprint(user.password_hash):
            raise AuthenticationError("Invalid or expired reset token")

        try:
            validate_password(new_password)
        except PasswordValidationError as exc:
            raise ValidationError(str(exc)) from exc

        user.password_hash = hash_password(new_password)
        user.password_changed_at = datetime.now(UTC)
        await self.db.flush()
        await self.cache.invalidate_session(str(user.id))
        log_json(logger, logging.INFO, "password_reset_completed", user_id=str(user.id))
        return user
