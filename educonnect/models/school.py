"""School model."""
import re
import secrets

from sqlalchemy import Boolean, CheckConstraint, Column, String
from sqlalchemy.orm import validates

from educonnect.models.base import BaseModel, UTCDateTime

SCHOOL_ID_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{3,4}$")


def generate_school_id(school_name: str) -> str:
    """Public school id: first three letters of the name plus four digits."""
    letters = "".join(ch for ch in school_name.upper() if "A" <= ch <= "Z")
    prefix = (letters + "XXX")[:3]
    return f"{prefix}{secrets.randbelow(9000) + 1000}"


class School(BaseModel):
    """School entity, the tenant that owns every user, student and invitation.

    Logins and invitations are only permitted while the school is both
    active and verified.
    """

    __tablename__ = "schools"

    school_id = Column(
        String(16),
        nullable=False,
        unique=True,
        index=True
    )
    school_name = Column(
        String(255),
        nullable=False
    )
    email = Column(
        String(255),
        nullable=False
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True
    )
    is_verified = Column(
        Boolean,
        nullable=False,
        default=False
    )
    verified_at = Column(
        UTCDateTime(),
        nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "LENGTH(school_name) > 0",
            name="school_name_not_empty"
        ),
    )

    def __init__(self, **kwargs):
        if not kwargs.get("school_id"):
            kwargs["school_id"] = generate_school_id(kwargs.get("school_name") or "")
        super().__init__(**kwargs)

    @validates("school_id")
    def _validate_school_id(self, key, value: str) -> str:
        if not SCHOOL_ID_PATTERN.match(value or ""):
            raise ValueError(f"Invalid school id: {value!r}")
        return value

    @validates("email")
    def _normalize_email(self, key, value: str) -> str:
        return value.strip().lower()

    @property
    def accepts_logins(self) -> bool:
        return bool(self.is_active and self.is_verified)

    def __repr__(self) -> str:
        return f"<School(id={self.id}, school_id={self.school_id})>"
