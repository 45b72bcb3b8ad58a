"""User model."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import validates

from educonnect.models.base import BaseModel, UTCDateTime
from educonnect.models.enums import UserRole

TEACHER_PROFILE_FIELDS = frozenset({"subjects", "qualifications", "experience_years"})
PARENT_PROFILE_FIELDS = frozenset(
    {"address", "occupation", "emergency_contact", "emergency_phone"}
)
COMMON_PROFILE_FIELDS = frozenset({"first_name", "last_name", "phone"})


class User(BaseModel):
    """User entity for school admins, teachers and parents.

    Users belong to a single school. Accounts created through an invitation
    start verified but inactive with a temporary password, and become active
    once the holder completes registration.
    """

    __tablename__ = "users"

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
    password_hash = Column(
        String(255),
        nullable=False
    )
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(30), nullable=True)
    role = Column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False
    )

    # Account state
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(UTCDateTime(), nullable=True)
    is_temporary_password = Column(Boolean, nullable=False, default=False)
    invited_by = Column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    invited_at = Column(UTCDateTime(), nullable=True)
    password_changed_at = Column(UTCDateTime(), nullable=True)
    last_login_at = Column(UTCDateTime(), nullable=True)
    deactivated_at = Column(UTCDateTime(), nullable=True)
    deactivated_by = Column(Uuid(as_uuid=True), nullable=True)
    deactivation_reason = Column(String(500), nullable=True)

    # Teacher profile
    subjects = Column(JSON, nullable=True)
    qualifications = Column(JSON, nullable=True)
    experience_years = Column(Integer, nullable=True)

    # Parent profile
    student_ids = Column(JSON, nullable=True)
    address = Column(Text, nullable=True)
    occupation = Column(String(100), nullable=True)
    emergency_contact = Column(String(100), nullable=True)
    emergency_phone = Column(String(30), nullable=True)

    __table_args__ = (
        UniqueConstraint("school_id", "email", name="uq_users_school_email"),
    )

    @validates("email")
    def _normalize_email(self, key, value: str) -> str:
        return value.strip().lower()

    @property
    def full_name(self) -> str:
        names = " ".join(part for part in (self.first_name, self.last_name) if part)
        return names or self.email

    @property
    def is_school_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_provisional(self) -> bool:
        """Invited account that has not exchanged its temporary password yet."""
        return bool(self.is_temporary_password)

    def allowed_profile_fields(self) -> frozenset[str]:
        if self.role == UserRole.TEACHER:
            return COMMON_PROFILE_FIELDS | TEACHER_PROFILE_FIELDS
        if self.role == UserRole.PARENT:
            return COMMON_PROFILE_FIELDS | PARENT_PROFILE_FIELDS
        return COMMON_PROFILE_FIELDS

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
