"""Invitation endpoints for school admins, plus the public token lookup."""

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.api.deps import get_cache, get_notification_service, require_school_admin
from educonnect.core.database import get_db
from educonnect.core.exceptions import NotFoundError
from educonnect.models.enums import InvitationRole, InvitationStatus
from educonnect.models.school import School
from educonnect.models.user import User
from educonnect.schemas.errors import ErrorResponse
from educonnect.schemas.invitation import (
    CancelRequest,
    CancelResponse,
    InvitationCreatedResponse,
    InvitationListResponse,
    InvitationLookupResponse,
    InvitationStatisticsResponse,
    InvitationSummary,
    InvitedUserSummary,
    ParentInviteRequest,
    ResendResponse,
    StudentSummary,
    TeacherInviteRequest,
)
from educonnect.services.cache_service import CacheClient
from educonnect.services.invitation_service import InvitationService
from educonnect.services.notification_service import NotificationService
from educonnect.services.provisioning_service import InvitationResult, ProvisioningService

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _created_response(result: InvitationResult, with_students: bool) -> InvitationCreatedResponse:
    return InvitationCreatedResponse(
        invitation=InvitationSummary.from_invitation(result.invitation),
        user=InvitedUserSummary.from_user(result.user),
        temporary_password=result.temporary_password,
        invitation_token=result.invitation_token,
        email_sent=result.email_sent,
        students=[StudentSummary.from_student(s) for s in result.students]
        if with_students
        else None,
    )


@router.post(
    "/teachers",
    response_model=InvitationCreatedResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def invite_teacher(
    payload: TeacherInviteRequest,
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Invite a teacher to the admin's school.

    Creates the provisional account and the invitation. The temporary
    password is returned once, here.
    """
    result = await ProvisioningService(db, cache, notifier).create_teacher_invitation(
        school_id=admin.school_id,
        admin_user_id=admin.id,
        **payload.model_dump(),
    )
    return _created_response(result, with_students=False)


@router.post(
    "/parents",
    response_model=InvitationCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
)
async def invite_parent(
    payload: ParentInviteRequest,
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    """Invite a parent and link them to the given students of the admin's school."""
    result = await ProvisioningService(db, cache, notifier).create_parent_invitation(
        school_id=admin.school_id,
        admin_user_id=admin.id,
        **payload.model_dump(),
    )
    return _created_response(result, with_students=True)


@router.get("", response_model=InvitationListResponse)
async def list_invitations(
    status_filter: InvitationStatus | None = Query(default=None, alias="status"),
    role: InvitationRole | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
):
    return await InvitationService(db, cache).list_invitations(
        admin.school_id, status=status_filter, role=role, page=page, limit=limit
    )


@router.get("/statistics", response_model=InvitationStatisticsResponse)
async def invitation_statistics(
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
):
    return await InvitationService(db).get_school_statistics(admin.school_id)


@router.get(
    "/lookup",
    response_model=InvitationLookupResponse,
    responses={404: {"model": ErrorResponse}},
)
async def lookup_invitation(
    token: str = Query(..., min_length=16),
    db: AsyncSession = Depends(get_db),
):
    """Public view of an invitation by its emailed token."""
    invitation = await InvitationService(db).find_by_token(token)
    if invitation is None:
        raise NotFoundError("Invitation not found")

    school_name = await db.scalar(
        select(School.school_name).where(School.school_id == invitation.school_id)
    )
    return InvitationLookupResponse(
        email=invitation.email,
        role=invitation.role,
        school_id=invitation.school_id,
        school_name=school_name,
        full_name=invitation.full_name,
        status=invitation.effective_status.value,
        is_valid=invitation.is_valid(),
        expires_at=invitation.expires_at,
        time_remaining=invitation.time_remaining,
    )


@router.post("/{invitation_id}/resend", response_model=ResendResponse, responses=_ERRORS)
async def resend_invitation(
    invitation_id: UUID,
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    result = await ProvisioningService(db, cache, notifier).resend_invitation(
        invitation_id, admin.school_id
    )
    return ResendResponse(
        invitation=InvitationSummary.from_invitation(result.invitation),
        email_sent=result.email_sent,
    )


@router.post("/{invitation_id}/cancel", response_model=CancelResponse, responses=_ERRORS)
async def cancel_invitation(
    invitation_id: UUID,
    payload: CancelRequest | None = Body(default=None),
    admin: User = Depends(require_school_admin),
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    notifier: NotificationService = Depends(get_notification_service),
):
    result = await ProvisioningService(db, cache, notifier).cancel_invitation(
        invitation_id,
        admin.school_id,
        admin.id,
        reason=payload.reason if payload else None,
    )
    return CancelResponse(
        invitation=InvitationSummary.from_invitation(result.invitation),
        user_deactivated=result.user_deactivated,
    )
