"""Account provisioning for invited teachers and parents.

Creating an invitation touches three tables: the provisional ``User``, the
linked ``Student.parent_ids`` (parents only) and the ``Invitation`` itself.
A ``ProvisioningContext`` records each write as it happens so a failure after
the first write can be undone before the error propagates.

Each operation commits its own writes. Cache invalidation and email dispatch
run only after the commit, so a reader never repopulates the cache from
uncommitted state and no row lock is held across an SMTP round trip. Email
is informational: a failed send is reported as ``email_sent=False`` and
never undoes the writes.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.config import get_settings
from educonnect.core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from educonnect.core.metrics import observe_invitation_event
from educonnect.core.security import (
    PasswordValidationError,
    generate_temporary_password,
    hash_password,
    validate_password,
    verify_password,
)
from educonnect.core.structured_logging import log_json
from educonnect.models.enums import InvitationRole, InvitationStatus, UserRole
from educonnect.models.invitation import Invitation, build_invitation
from educonnect.models.school import School
from educonnect.models.student import Student
from educonnect.models.user import User
from educonnect.services.auth_service import TokenPair, issue_token_pair, session_payload
from educonnect.services.cache_service import CacheClient
from educonnect.services.invitation_service import InvitationService
from educonnect.services.notification_service import (
    PARENT_INVITATION,
    TEACHER_INVITATION,
    NotificationService,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBJECTS = ["General"]
INVALID_STUDENTS = "One or more student IDs are invalid or do not belong to this school"
DUPLICATE_INVITATION = "An active invitation already exists for this email"


@dataclass
class ProvisioningContext:
    """Partial results of one provisioning call, used for compensation."""

    role: InvitationRole
    school: School | None = None
    admin: User | None = None
    students: list[Student] = field(default_factory=list)
    user: User | None = None
    user_created: bool = False
    linked_students: list[Student] = field(default_factory=list)
    invitation: Invitation | None = None


@dataclass
class InvitationResult:
    invitation: Invitation
    user: User
    temporary_password: str
    invitation_token: str
    email_sent: bool
    students: list[Student] = field(default_factory=list)


@dataclass
class ResendResult:
    invitation: Invitation
    email_sent: bool


@dataclass
class CancelResult:
    invitation: Invitation
    user_deactivated: bool


@dataclass
class RegistrationResult:
    user: User
    tokens: TokenPair


class ProvisioningService:
    """Orchestrates invitation creation, resend, cancellation and registration."""

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient | None = None,
        notifier: NotificationService | None = None,
    ):
        self.db = db
        self.cache = cache or CacheClient()
        self.notifier = notifier or NotificationService()
        self.ledger = InvitationService(db, self.cache)
        self.settings = get_settings()

    # Context resolution

    async def _resolve_school(self, school_id: str) -> School:
        result = await self.db.execute(select(School).where(School.school_id == school_id))
        school = result.scalar_one_or_none()
        if school is None or not school.is_active or not school.is_verified:
            raise NotFoundError("School not found or not active")
        return school

    async def _resolve_admin(self, admin_user_id: UUID, school_id: str) -> User:
        result = await self.db.execute(
            select(User).where(
                User.id == admin_user_id,
                User.school_id == school_id,
                User.role == UserRole.ADMIN,
                User.is_active.is_(True),
            )
        )
        admin = result.scalar_one_or_none()
        if admin is None:
            raise ValidationError("No admin user found for this school")
        return admin

    async def _resolve_students(self, student_ids: list[str], school_id: str) -> list[Student]:
        """Every id must be an active student of this school; partial matches fail."""
        if not student_ids:
            raise ValidationError("At least one student ID is required for parent invitations")

        try:
            wanted = list(dict.fromkeys(UUID(str(sid)) for sid in student_ids))
        except ValueError as exc:
            raise ValidationError(INVALID_STUDENTS) from exc

        result = await self.db.execute(
            select(Student).where(
                Student.id.in_(wanted),
                Student.school_id == school_id,
                Student.is_active.is_(True),
            )
        )
        found = {student.id: student for student in result.scalars().all()}
        if len(found) != len(wanted):
            raise ValidationError(INVALID_STUDENTS)
        return [found[sid] for sid in wanted]

    async def _get_user_by_email(self, email: str, school_id: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.email == email, User.school_id == school_id)
        )
        return result.scalar_one_or_none()

    async def _get_user(self, user_id: str | None, school_id: str) -> User | None:
        if not user_id:
            return None
        try:
            uid = UUID(str(user_id))
        except ValueError:
            return None
        result = await self.db.execute(
            select(User).where(User.id == uid, User.school_id == school_id)
        )
        return result.scalar_one_or_none()

    async def _check_uniqueness(self, email: str, school_id: str, role: InvitationRole) -> None:
        await self.ledger.expire_stale_for(email, school_id, role)
        if await self.ledger.find_active(email, school_id, role) is not None:
            raise ConflictError(DUPLICATE_INVITATION)

    # Creation

    async def create_teacher_invitation(
        self,
        *,
        school_id: str,
        admin_user_id: UUID,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        subjects: list[str] | None = None,
        classes: list[str] | None = None,
        qualifications: list[str] | None = None,
        experience_years: int | None = None,
        message: str | None = None,
    ) -> InvitationResult:
        subjects = list(subjects or DEFAULT_SUBJECTS)
        return await self._create_invitation(
            ProvisioningContext(role=InvitationRole.TEACHER),
            school_id=school_id,
            admin_user_id=admin_user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            message=message,
            user_fields={
                "subjects": subjects,
                "qualifications": qualifications,
                "experience_years": experience_years,
            },
            invitation_fields={"subjects": subjects, "classes": classes or None},
        )

    async def create_parent_invitation(
        self,
        *,
        school_id: str,
        admin_user_id: UUID,
        email: str,
        first_name: str,
        last_name: str,
        student_ids: list[str],
        phone: str | None = None,
        address: str | None = None,
        occupation: str | None = None,
        message: str | None = None,
    ) -> InvitationResult:
        return await self._create_invitation(
            ProvisioningContext(role=InvitationRole.PARENT),
            school_id=school_id,
            admin_user_id=admin_user_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            message=message,
            user_fields={"address": address, "occupation": occupation},
            student_ids=student_ids,
        )

    async def _create_invitation(
        self,
        ctx: ProvisioningContext,
        *,
        school_id: str,
        admin_user_id: UUID,
        email: str,
        first_name: str,
        last_name: str,
        phone: str | None,
        message: str | None,
        user_fields: dict[str, Any],
        invitation_fields: dict[str, Any] | None = None,
        student_ids: list[str] | None = None,
    ) -> InvitationResult:
        email = email.strip().lower()

        # Validation, no writes yet
        ctx.school = await self._resolve_school(school_id)
        ctx.admin = await self._resolve_admin(admin_user_id, school_id)
        if ctx.role == InvitationRole.PARENT:
            ctx.students = await self._resolve_students(student_ids or [], school_id)
        await self._check_uniqueness(email, school_id, ctx.role)

        existing = await self._get_user_by_email(email, school_id)
        if existing is not None and not (
            existing.is_temporary_password and existing.role.value == ctx.role.value
        ):
            raise ConflictError("A user with this email already exists in this school")

        temporary_password = generate_temporary_password()
        now = datetime.now(UTC)

        try:
            ctx.user = self._provision_user(
                existing,
                school_id=school_id,
                email=email,
                role=UserRole(ctx.role.value),
                password_hash=hash_password(temporary_password),
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                invited_by=ctx.admin.id,
                now=now,
                fields=user_fields,
            )
            if existing is None:
                self.db.add(ctx.user)
                ctx.user_created = True
            await self.db.flush()

            if ctx.role == InvitationRole.PARENT:
                for student in ctx.students:
                    if student.add_parent(ctx.user.id):
                        ctx.linked_students.append(student)
                ctx.user.student_ids = [str(student.id) for student in ctx.students]
                invitation_fields = {"student_ids": [str(s.id) for s in ctx.students]}
                await self.db.flush()

            metadata = {
                "first_name": first_name,
                "last_name": last_name,
                "message": message,
                "user_id": str(ctx.user.id),
                "temp_password": temporary_password,
            }
            if ctx.students:
                metadata["student_names"] = [student.full_name for student in ctx.students]

            ctx.invitation = build_invitation(
                ctx.role,
                school_id=school_id,
                email=email,
                invited_by=ctx.admin.id,
                expires_at=now + timedelta(hours=self.settings.invitation_expiry_hours),
                metadata_json=metadata,
                **(invitation_fields or {}),
            )
            self.db.add(ctx.invitation)
            await self.db.flush()
        except IntegrityError as exc:
            # Lost the race for the pending slot; rolling back undoes every write
            await self.db.rollback()
            log_json(
                logger,
                logging.WARNING,
                "invitation_conflict",
                school_id=school_id,
                role=ctx.role.value,
                error_type=type(exc).__name__,
            )
            raise ConflictError(DUPLICATE_INVITATION) from exc
        except SQLAlchemyError:
            await self.db.rollback()
            raise
        except Exception:
            await self._compensate(ctx)
            raise

        await self.db.commit()
        await self.ledger.invalidate_invitation_caches(school_id)
        observe_invitation_event("created", role=ctx.role.value)
        log_json(
            logger,
            logging.INFO,
            "invitation_created",
            invitation_id=str(ctx.invitation.id),
            school_id=school_id,
            role=ctx.role.value,
            user_id=str(ctx.user.id),
            reused_user=not ctx.user_created,
        )

        email_sent = await self._send_invitation_email(
            ctx.invitation, ctx.school, ctx.admin, temporary_password, ctx.students
        )

        return InvitationResult(
            invitation=ctx.invitation,
            user=ctx.user,
            temporary_password=temporary_password,
            invitation_token=ctx.invitation.token,
            email_sent=email_sent,
            students=ctx.students,
        )

    @staticmethod
    def _provision_user(
        existing: User | None,
        *,
        school_id: str,
        email: str,
        role: UserRole,
        password_hash: str,
        first_name: str,
        last_name: str,
        phone: str | None,
        invited_by: UUID,
        now: datetime,
        fields: dict[str, Any],
    ) -> User:
        """New provisional user, or a re-invited one reset to provisional state."""
        user = existing or User(school_id=school_id, email=email, role=role)
        user.password_hash = password_hash
        user.first_name = first_name
        user.last_name = last_name
        user.phone = phone
        user.is_active = False
        user.is_verified = True
        user.verified_at = now
        user.is_temporary_password = True
        user.invited_by = invited_by
        user.invited_at = now
        user.deactivated_at = None
        user.deactivated_by = None
        user.deactivation_reason = None
        for key, value in fields.items():
            if value is not None:
                setattr(user, key, value)
        return user

    async def _compensate(self, ctx: ProvisioningContext) -> None:
        """Undo the writes recorded in ``ctx``, newest first."""
        if ctx.user is None:
            return
        for student in ctx.linked_students:
            student.remove_parent(ctx.user.id)
        if ctx.user_created:
            await self.db.delete(ctx.user)
        await self.db.flush()
        log_json(
            logger,
            logging.WARNING,
            "invitation_provisioning_compensated",
            school_id=ctx.school.school_id if ctx.school else None,
            role=ctx.role.value,
            unlinked_students=len(ctx.linked_students),
            user_removed=ctx.user_created,
        )

    async def _send_invitation_email(
        self,
        invitation: Invitation,
        school: School,
        inviter: User | None,
        temporary_password: str | None,
        students: list[Student] | None = None,
    ) -> bool:
        meta = invitation.metadata_json or {}
        variables: dict[str, Any] = {
            "name": invitation.full_name,
            "inviter_name": inviter.full_name if inviter else school.school_name,
            "school_name": school.school_name,
            "school_id": school.school_id,
            "temporary_password": temporary_password,
            "login_url": f"{self.settings.frontend_url}/login?school_id={school.school_id}",
            "expires_at": invitation.expires_at.strftime("%Y-%m-%d %H:%M UTC"),
            "message": meta.get("message"),
        }
        if invitation.role == InvitationRole.TEACHER.value:
            template = TEACHER_INVITATION
            variables["subjects"] = ", ".join(invitation.subjects or [])
        else:
            template = PARENT_INVITATION
            names = [s.full_name for s in students] if students else meta.get("student_names", [])
            variables["student_names"] = ", ".join(names)

        result = await self.notifier.send_templated_invitation(
            template,
            invitation.email,
            f"Invitation to join {school.school_name} on EduConnect",
            variables,
        )
        if not result.success:
            log_json(
                logger,
                logging.WARNING,
                "invitation_email_not_sent",
                invitation_id=str(invitation.id),
                error=result.error,
            )
        return result.success

    # Resend / cancel

    async def resend_invitation(
        self,
        invitation_id: UUID,
        school_id: str,
        extension_hours: int | None = None,
    ) -> ResendResult:
        """Reopen an invitation with a fresh token and expiry, and email it again.

        The emailed temporary password must still open the linked account. A
        later invitation to the same address replaces the account's password,
        so a stored password that no longer verifies is rotated here.
        """
        school = await self._resolve_school(school_id)
        invitation = await self.ledger.get_invitation(invitation_id, school_id)

        if invitation.status == InvitationStatus.EXPIRED and await self.ledger.find_active(
            invitation.email, school_id, invitation.role, exclude_id=invitation.id
        ):
            raise ConflictError("Another active invitation exists for this email")

        user = await self._get_user(invitation.user_id, school_id)
        if user is not None and user.deactivated_at is not None:
            raise InvalidStateError("The invited account has been deactivated")
        inviter = await self._get_user(
            str(invitation.invited_by) if invitation.invited_by else None, school_id
        )

        invitation.resend(extension_hours or self.settings.invitation_expiry_hours)
        invitation.issue_token()

        temporary_password = (invitation.metadata_json or {}).get("temp_password")
        if user is not None and user.is_temporary_password and not (
            temporary_password and verify_password(temporary_password, user.password_hash)
        ):
            temporary_password = generate_temporary_password()
            user.password_hash = hash_password(temporary_password)
            invitation.update_metadata(temp_password=temporary_password)
            log_json(
                logger,
                logging.INFO,
                "invitation_password_rotated",
                invitation_id=str(invitation.id),
                school_id=school_id,
            )

        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            raise ConflictError("Another active invitation exists for this email") from exc

        await self.ledger.invalidate_invitation_caches(school_id)
        observe_invitation_event("resent", role=invitation.role)
        log_json(
            logger,
            logging.INFO,
            "invitation_resent",
            invitation_id=str(invitation.id),
            school_id=school_id,
            resend_count=invitation.resend_count,
        )

        email_sent = await self._send_invitation_email(
            invitation, school, inviter, temporary_password
        )
        return ResendResult(invitation=invitation, email_sent=email_sent)

    async def cancel_invitation(
        self,
        invitation_id: UUID,
        school_id: str,
        admin_user_id: UUID,
        reason: str | None = None,
    ) -> CancelResult:
        """Cancel an invitation and retire its provisional account.

        The linked user is deactivated only while it still holds the
        temporary password; an account that completed registration is left
        untouched.
        """
        admin = await self._resolve_admin(admin_user_id, school_id)
        invitation = await self.ledger.get_invitation(invitation_id, school_id)
        invitation.cancel(admin.id, reason)
        invitation.discard_metadata("temp_password")

        user_deactivated = False
        user = await self._get_user(invitation.user_id, school_id)
        if user is not None and user.is_temporary_password:
            user.is_active = False
            user.deactivated_at = datetime.now(UTC)
            user.deactivated_by = admin.id
            user.deactivation_reason = reason or "Invitation cancelled"
            user_deactivated = True

        await self.db.commit()
        await self.ledger.invalidate_invitation_caches(school_id)
        observe_invitation_event("cancelled", role=invitation.role)
        log_json(
            logger,
            logging.INFO,
            "invitation_cancelled",
            invitation_id=str(invitation.id),
            school_id=school_id,
            user_deactivated=user_deactivated,
        )
        return CancelResult(invitation=invitation, user_deactivated=user_deactivated)

    # Registration

    async def _linked_invitation(self, user: User) -> Invitation | None:
        candidates = await self.ledger.find_by_email_and_school(
            user.email, user.school_id, user.role.value
        )
        linked = [inv for inv in candidates if inv.user_id == str(user.id)]
        for invitation in linked:
            if invitation.status == InvitationStatus.PENDING:
                return invitation
        return linked[0] if linked else None

    async def complete_registration(
        self,
        *,
        email: str,
        school_id: str,
        current_password: str,
        new_password: str,
        profile: dict[str, Any] | None = None,
    ) -> RegistrationResult:
        """Exchange the temporary password for a real one and activate the account.

        Succeeds once: afterwards the account no longer has a temporary
        password and a replay fails the lookup with ``NotFoundError``.
        """
        result = await self.db.execute(
            select(User).where(
                User.email == email.strip().lower(),
                User.school_id == school_id,
                User.is_temporary_password.is_(True),
                User.deactivated_at.is_(None),
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found or registration already completed")

        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Invalid current password")

        try:
            validate_password(new_password)
        except PasswordValidationError as exc:
            raise ValidationError(str(exc)) from exc

        profile = {k: v for k, v in (profile or {}).items() if v is not None}
        disallowed = sorted(set(profile) - user.allowed_profile_fields())
        if disallowed:
            raise ValidationError(
                f"Fields not allowed for {user.role.value} accounts: {', '.join(disallowed)}",
                details={"fields": disallowed},
            )

        invitation = await self._linked_invitation(user)
        if invitation is not None:
            invitation.accept(user.id)
            invitation.discard_metadata("temp_password")

        now = datetime.now(UTC)
        user.password_hash = hash_password(new_password)
        user.is_temporary_password = False
        user.is_active = True
        user.password_changed_at = now
        user.last_login_at = now
        for key, value in profile.items():
            setattr(user, key, value)
        await self.db.commit()

        tokens = issue_token_pair(user)
        await self.cache.cache_session(str(user.id), session_payload(user))
        if invitation is not None:
            await self.ledger.invalidate_invitation_caches(school_id)
            observe_invitation_event("accepted", role=invitation.role)
        log_json(
            logger,
            logging.INFO,
            "registration_completed",
            user_id=str(user.id),
            school_id=school_id,
            invitation_id=str(invitation.id) if invitation else None,
        )
        return RegistrationResult(user=user, tokens=tokens)
