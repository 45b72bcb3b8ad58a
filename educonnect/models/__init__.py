"""SQLAlchemy models."""

from educonnect.models.base import Base, BaseModel
from educonnect.models.enums import IdentityKind, InvitationRole, InvitationStatus, UserRole
from educonnect.models.invitation import Invitation, ParentInvitation, TeacherInvitation
from educonnect.models.school import School
from educonnect.models.student import Student
from educonnect.models.user import User

__all__ = [
    "Base",
    "BaseModel",
    "UserRole",
    "InvitationRole",
    "InvitationStatus",
    "IdentityKind",
    "School",
    "User",
    "Student",
    "Invitation",
    "TeacherInvitation",
    "ParentInvitation",
]
