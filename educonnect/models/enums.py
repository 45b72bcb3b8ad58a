"""Enumerations for roles and invitation states."""

from enum import Enum


class UserRole(str, Enum):
    """Roles a school account can hold.

    Admins manage the school; teachers and parents join by invitation.
    """

    ADMIN = "admin"
    TEACHER = "teacher"
    PARENT = "parent"


class InvitationRole(str, Enum):
    """Roles that can be invited."""

    TEACHER = "teacher"
    PARENT = "parent"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class IdentityKind(str, Enum):
    """Claim shapes a bearer token can resolve to."""

    SYSTEM_ADMIN = "system_admin"
    SCHOOL_ADMIN = "school_admin"
    USER = "user"
