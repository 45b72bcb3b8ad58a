"""Pydantic schemas for invitation endpoints."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from educonnect.models.invitation import Invitation
from educonnect.models.student import Student
from educonnect.models.user import User


class _InviteBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr = Field(..., description="Email address of the person to invite")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str | None = Field(default=None, max_length=30)
    message: str | None = Field(default=None, max_length=1000, description="Personal note")


class TeacherInviteRequest(_InviteBase):
    """POST /api/invitations/teachers. ``subjects`` defaults to ["General"]."""

    subjects: list[str] = Field(default_factory=list)
    classes: list[str] | None = None
    qualifications: list[str] | None = None
    experience_years: int | None = Field(default=None, ge=0, le=80)


class ParentInviteRequest(_InviteBase):
    """POST /api/invitations/parents."""

    student_ids: list[str] = Field(default_factory=list, description="Student record ids")
    address: str | None = None
    occupation: str | None = Field(default=None, max_length=100)


class InvitationSummary(BaseModel):
    id: UUID
    email: str
    role: str
    school_id: str
    status: str = Field(..., description="Effective status (stale pending reads as expired)")
    status_display: str
    full_name: str
    expires_at: datetime
    time_remaining: str | None = None
    resend_count: int
    last_resend_at: datetime | None = None
    invited_by: UUID | None = None
    user_id: str | None = None
    subjects: list[str] | None = None
    classes: list[str] | None = None
    student_ids: list[str] | None = None
    accepted_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationSummary":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=invitation.role,
            school_id=invitation.school_id,
            status=invitation.effective_status.value,
            status_display=invitation.status_display,
            full_name=invitation.full_name,
            expires_at=invitation.expires_at,
            time_remaining=invitation.time_remaining,
            resend_count=invitation.resend_count or 0,
            last_resend_at=invitation.last_resend_at,
            invited_by=invitation.invited_by,
            user_id=invitation.user_id,
            subjects=getattr(invitation, "subjects", None),
            classes=getattr(invitation, "classes", None),
            student_ids=getattr(invitation, "student_ids", None),
            accepted_at=invitation.accepted_at,
            cancelled_at=invitation.cancelled_at,
            created_at=invitation.created_at,
        )


class InvitedUserSummary(BaseModel):
    id: UUID
    email: str
    role: str
    first_name: str | None = None
    last_name: str | None = None
    is_active: bool
    is_verified: bool
    is_temporary_password: bool

    @classmethod
    def from_user(cls, user: User) -> "InvitedUserSummary":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role.value,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_verified=user.is_verified,
            is_temporary_password=user.is_temporary_password,
        )


class StudentSummary(BaseModel):
    id: UUID
    student_id: str
    name: str
    class_name: str | None = None

    @classmethod
    def from_student(cls, student: Student) -> "StudentSummary":
        return cls(
            id=student.id,
            student_id=student.student_id,
            name=student.full_name,
            class_name=student.class_name,
        )


class InvitationCreatedResponse(BaseModel):
    """Creation result.

    ``temporary_password`` and ``invitation_token`` are bearer secrets and
    appear only in this response.
    """

    invitation: InvitationSummary
    user: InvitedUserSummary
    temporary_password: str
    invitation_token: str
    email_sent: bool
    students: list[StudentSummary] | None = None


class ResendResponse(BaseModel):
    invitation: InvitationSummary
    email_sent: bool
    message: str = "Invitation resent successfully"


class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class CancelResponse(BaseModel):
    invitation: InvitationSummary
    user_deactivated: bool
    message: str = "Invitation cancelled successfully"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class StatusCounts(BaseModel):
    total: int = 0
    pending: int = 0
    accepted: int = 0
    expired: int = 0
    cancelled: int = 0


class InvitationListResponse(BaseModel):
    invitations: list[InvitationSummary]
    pagination: Pagination
    summary: StatusCounts


class InvitationStatisticsResponse(StatusCounts):
    school_id: str
    by_role: dict[str, StatusCounts] = Field(default_factory=dict)


class InvitationLookupResponse(BaseModel):
    """Public view of an invitation, resolved by its token."""

    email: str
    role: str
    school_id: str
    school_name: str | None = None
    full_name: str
    status: str
    is_valid: bool
    expires_at: datetime
    time_remaining: str | None = None
