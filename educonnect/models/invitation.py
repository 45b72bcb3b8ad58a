"""Invitation model.

Invitations are a tagged union on ``role``: ``TeacherInvitation`` carries
``subjects`` (required) and ``classes``; ``ParentInvitation`` carries
``student_ids`` (required). Both live in one table, and passing a field that
belongs to the other variant is rejected at construction time.
"""
import hashlib
import secrets
from datetime import datetime, timedelta

from sqlalchemy import (
    JSON,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import validates

from educonnect.core.exceptions import InvalidStateError, ValidationError
from educonnect.core.invitation_workflow import effective_status, is_valid_transition
from educonnect.models.base import BaseModel, UTCDateTime, utcnow
from educonnect.models.enums import InvitationRole, InvitationStatus

DEFAULT_EXPIRY_HOURS = 72
DEFAULT_EXTENSION_HOURS = 24

_VARIANT_FIELDS = frozenset({"subjects", "classes", "student_ids"})


def hash_invitation_token(token: str) -> str:
    """SHA-256 hex digest; only this is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_invitation_token() -> str:
    return secrets.token_hex(32)


def _humanize_remaining(delta: timedelta) -> str:
    hours = int(delta.total_seconds() // 3600)
    days = hours // 24
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} remaining"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} remaining"
    minutes = int(delta.total_seconds() // 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''} remaining"


class Invitation(BaseModel):
    """Pending invitation for a teacher or parent to join a school.

    Each invitation references the provisional user created alongside it
    (``metadata["user_id"]``). Status only ever changes through the
    transition methods below; rows are never deleted.
    """

    __tablename__ = "invitations"

    school_id = Column(
        String(16),
        ForeignKey("schools.school_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    email = Column(
        String(255),
        nullable=False
    )
    role = Column(
        String(20),
        nullable=False
    )
    token_hash = Column(
        String(64),
        nullable=False,
        unique=True,
        index=True
    )
    invited_by = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    status = Column(
        SQLEnum(
            InvitationStatus,
            name="invitation_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=InvitationStatus.PENDING,
        index=True
    )
    expires_at = Column(
        UTCDateTime(),
        nullable=False,
        index=True
    )
    resend_count = Column(Integer, nullable=False, default=0)
    last_resend_at = Column(UTCDateTime(), nullable=True)
    accepted_by = Column(Uuid(as_uuid=True), nullable=True)
    accepted_at = Column(UTCDateTime(), nullable=True)
    cancelled_by = Column(Uuid(as_uuid=True), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    # Load every variant's columns up front; async sessions cannot lazy-load them
    __mapper_args__ = {"polymorphic_on": role, "with_polymorphic": "*"}

    __table_args__ = (
        # At most one pending invitation per (email, school, role)
        Index(
            "uq_invitations_pending_email_school_role",
            "email",
            "school_id",
            "role",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_invitations_school_status", "school_id", "status"),
    )

    # Plaintext token, only set on instances created in this process
    token = None

    _required_field = None
    _allowed_fields = frozenset()

    def __init__(self, **kwargs):
        if type(self) is Invitation:
            raise TypeError("Instantiate TeacherInvitation or ParentInvitation")

        identity = self.__mapper__.polymorphic_identity
        role = kwargs.pop("role", None)
        if role is not None and getattr(role, "value", role) != identity:
            raise ValidationError(f"Role {role} does not match {type(self).__name__}")
        kwargs["role"] = identity

        for field in _VARIANT_FIELDS - self._allowed_fields:
            if kwargs.pop(field, None):
                raise ValidationError(
                    f"{field} is not allowed for {identity} invitations"
                )

        if not kwargs.get(self._required_field):
            raise ValidationError(
                f"{self._required_field} is required for "
                f"{identity} invitations"
            )

        token = kwargs.pop("token", None) or generate_invitation_token()
        kwargs["token_hash"] = hash_invitation_token(token)
        kwargs.setdefault("status", InvitationStatus.PENDING)
        kwargs.setdefault("resend_count", 0)
        kwargs.setdefault("metadata_json", {})
        kwargs.setdefault("expires_at", utcnow() + timedelta(hours=DEFAULT_EXPIRY_HOURS))
        super().__init__(**kwargs)
        self.token = token

    @validates("email")
    def _normalize_email(self, key, value: str) -> str:
        return value.strip().lower()

    def issue_token(self) -> str:
        """Replace the token; the previous one stops resolving."""
        token = generate_invitation_token()
        self.token_hash = hash_invitation_token(token)
        self.token = token
        return token

    # Derived state

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.status == InvitationStatus.PENDING and not self.is_expired(now)

    @property
    def effective_status(self) -> InvitationStatus:
        return effective_status(self)

    @property
    def full_name(self) -> str:
        meta = self.metadata_json or {}
        names = " ".join(part for part in (meta.get("first_name"), meta.get("last_name")) if part)
        return names or self.email

    @property
    def display_name(self) -> str:
        return f"{self.full_name} ({self.role})"

    @property
    def status_display(self) -> str:
        return self.effective_status.value.capitalize()

    @property
    def time_remaining(self) -> str | None:
        if self.status != InvitationStatus.PENDING:
            return None
        remaining = self.expires_at - utcnow()
        if remaining.total_seconds() <= 0:
            return "Expired"
        return _humanize_remaining(remaining)

    @property
    def user_id(self) -> str | None:
        return (self.metadata_json or {}).get("user_id")

    def update_metadata(self, **values) -> None:
        merged = dict(self.metadata_json or {})
        merged.update(values)
        self.metadata_json = merged

    def discard_metadata(self, *keys: str) -> None:
        self.metadata_json = {
            k: v for k, v in (self.metadata_json or {}).items() if k not in keys
        }

    # Transitions

    def accept(self, accepted_by) -> None:
        """Mark accepted. Requires a pending invitation that has not expired."""
        if not self.is_valid():
            raise InvalidStateError("Invitation is not valid or has expired")
        self.status = InvitationStatus.ACCEPTED
        self.accepted_by = accepted_by
        self.accepted_at = utcnow()

    def cancel(self, cancelled_by, reason: str | None = None) -> None:
        """Cancel a pending invitation.

        Checks the stored status only: a pending row past its expiry can
        still be cancelled by an admin.
        """
        if self.status != InvitationStatus.PENDING:
            raise InvalidStateError("Only pending invitations can be cancelled")
        self.status = InvitationStatus.CANCELLED
        self.cancelled_by = cancelled_by
        self.cancelled_at = utcnow()
        self.cancellation_reason = reason

    def resend(self, extension_hours: int = DEFAULT_EXPIRY_HOURS) -> None:
        """Reset to pending with a fresh expiry window."""
        current = InvitationStatus(self.status)
        if not is_valid_transition(current, InvitationStatus.PENDING):
            raise InvalidStateError("Only pending or expired invitations can be resent")
        now = utcnow()
        self.status = InvitationStatus.PENDING
        self.resend_count = (self.resend_count or 0) + 1
        self.last_resend_at = now
        self.expires_at = now + timedelta(hours=extension_hours)

    def extend_expiration(self, hours: int = DEFAULT_EXTENSION_HOURS) -> None:
        """Push the existing expiry back by ``hours`` (additive, not from now)."""
        if self.status != InvitationStatus.PENDING:
            raise InvalidStateError("Only pending invitations can be extended")
        self.expires_at = self.expires_at + timedelta(hours=hours)

    def __repr__(self) -> str:
        return (
            f"<Invitation(id={self.id}, email={self.email}, role={self.role}, "
            f"school_id={self.school_id}, status={self.status})>"
        )


class TeacherInvitation(Invitation):
    __mapper_args__ = {"polymorphic_identity": InvitationRole.TEACHER.value}

    _required_field = "subjects"
    _allowed_fields = frozenset({"subjects", "classes"})

    subjects = Column(JSON, nullable=True)
    classes = Column(JSON, nullable=True)

    @validates("subjects")
    def _validate_subjects(self, key, value):
        if not value:
            raise ValidationError("Teacher invitations require at least one subject")
        return list(value)


class ParentInvitation(Invitation):
    __mapper_args__ = {"polymorphic_identity": InvitationRole.PARENT.value}

    _required_field = "student_ids"
    _allowed_fields = frozenset({"student_ids"})

    student_ids = Column(JSON, nullable=True)

    @validates("student_ids")
    def _validate_student_ids(self, key, value):
        if not value:
            raise ValidationError("Parent invitations require at least one student")
        return [str(student_id) for student_id in value]


INVITATION_VARIANTS: dict[str, type[Invitation]] = {
    InvitationRole.TEACHER.value: TeacherInvitation,
    InvitationRole.PARENT.value: ParentInvitation,
}


def build_invitation(role: InvitationRole | str, **fields) -> Invitation:
    """Construct the variant matching ``role``."""
    try:
        variant = INVITATION_VARIANTS[InvitationRole(role).value]
    except ValueError as exc:
        raise ValidationError(f"Invalid invitation role: {role}") from exc
    return variant(**fields)
