"""Invitation ledger queries.

Lookups, the expiry sweep, per-school statistics and the cached invitation
list. Every query is scoped by ``school_id``; status changes on individual
rows go through the ``Invitation`` transition methods, and the only bulk
status write here is the pending -> expired flip.
"""
import logging
import math
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from educonnect.core.exceptions import NotFoundError, ValidationError
from educonnect.core.metrics import observe_invitation_event
from educonnect.core.structured_logging import log_json
from educonnect.models.enums import InvitationRole, InvitationStatus
from educonnect.models.invitation import Invitation, hash_invitation_token
from educonnect.schemas.invitation import InvitationSummary, StatusCounts
from educonnect.services.cache_service import NAMESPACE_INVITATION, CacheClient

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _stale_pending(now: datetime):
    return and_(Invitation.status == InvitationStatus.PENDING, Invitation.expires_at <= now)


def _active_pending(now: datetime):
    return and_(Invitation.status == InvitationStatus.PENDING, Invitation.expires_at > now)


def _effective_status_filter(status: InvitationStatus, now: datetime):
    if status == InvitationStatus.PENDING:
        return _active_pending(now)
    if status == InvitationStatus.EXPIRED:
        return or_(Invitation.status == InvitationStatus.EXPIRED, _stale_pending(now))
    return Invitation.status == status


def _role_value(role: InvitationRole | str) -> str:
    try:
        return InvitationRole(role).value
    except ValueError as exc:
        raise ValidationError(f"Invalid invitation role: {role}") from exc


class InvitationService:
    """Service for reading and sweeping invitations."""

    def __init__(self, db: AsyncSession, cache: CacheClient | None = None):
        self.db = db
        self.cache = cache or CacheClient()

    async def get_invitation(self, invitation_id: UUID, school_id: str) -> Invitation:
        """Load an invitation owned by ``school_id``.

        Raises:
            NotFoundError: unknown id, or the invitation belongs to another school
        """
        result = await self.db.execute(
            select(Invitation).where(
                Invitation.id == invitation_id,
                Invitation.school_id == school_id,
            )
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("Invitation not found")
        return invitation

    async def find_by_token(self, token: str) -> Invitation | None:
        result = await self.db.execute(
            select(Invitation).where(Invitation.token_hash == hash_invitation_token(token))
        )
        return result.scalar_one_or_none()

    async def find_by_school_and_status(
        self,
        school_id: str,
        status: InvitationStatus | None = None,
    ) -> list[Invitation]:
        """Invitations for a school, newest first, optionally by effective status."""
        query = select(Invitation).where(Invitation.school_id == school_id)
        if status is not None:
            query = query.where(
                _effective_status_filter(InvitationStatus(status), datetime.now(UTC))
            )
        result = await self.db.execute(query.order_by(Invitation.created_at.desc()))
        return list(result.scalars().all())

    async def find_pending_by_school(self, school_id: str) -> list[Invitation]:
        return await self.find_by_school_and_status(school_id, InvitationStatus.PENDING)

    async def find_expired_by_school(self, school_id: str) -> list[Invitation]:
        """Pending rows past their expiry that the sweep has not flipped yet."""
        result = await self.db.execute(
            select(Invitation)
            .where(
                Invitation.school_id == school_id,
                _stale_pending(datetime.now(UTC)),
            )
            .order_by(Invitation.expires_at)
        )
        return list(result.scalars().all())

    async def find_by_email_and_school(
        self,
        email: str,
        school_id: str,
        role: InvitationRole | str | None = None,
    ) -> list[Invitation]:
        query = select(Invitation).where(
            Invitation.email == email.strip().lower(),
            Invitation.school_id == school_id,
        )
        if role is not None:
            query = query.where(Invitation.role == _role_value(role))
        result = await self.db.execute(query.order_by(Invitation.created_at.desc()))
        return list(result.scalars().all())

    async def find_active(
        self,
        email: str,
        school_id: str,
        role: InvitationRole | str,
        exclude_id: UUID | None = None,
    ) -> Invitation | None:
        """The pending, unexpired invitation for ``(email, school, role)``, if any."""
        query = select(Invitation).where(
            Invitation.email == email.strip().lower(),
            Invitation.school_id == school_id,
            Invitation.role == _role_value(role),
            _active_pending(datetime.now(UTC)),
        )
        if exclude_id is not None:
            query = query.where(Invitation.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def expire_old_invitations(self) -> int:
        """Flip every pending invitation past its expiry to ``expired``.

        Idempotent and safe to run concurrently: it only touches rows that
        still match the filter. Returns the number of rows flipped.
        """
        now = datetime.now(UTC)
        result = await self.db.execute(
            update(Invitation)
            .where(_stale_pending(now))
            .values(status=InvitationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        count = int(result.rowcount or 0)
        observe_invitation_event("expired", count=count)
        return count

    async def expire_stale_for(
        self,
        email: str,
        school_id: str,
        role: InvitationRole | str,
    ) -> int:
        """Flip stale pending rows for one tuple so a re-invite can take the slot."""
        now = datetime.now(UTC)
        result = await self.db.execute(
            update(Invitation)
            .where(
                Invitation.email == email.strip().lower(),
                Invitation.school_id == school_id,
                Invitation.role == _role_value(role),
                _stale_pending(now),
            )
            .values(status=InvitationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        count = int(result.rowcount or 0)
        if count:
            observe_invitation_event("expired", role=_role_value(role), count=count)
        return count

    async def _count_by_status(self, school_id: str, now: datetime) -> dict[str, StatusCounts]:
        rows = await self.db.execute(
            select(Invitation.role, Invitation.status, func.count())
            .where(Invitation.school_id == school_id)
            .group_by(Invitation.role, Invitation.status)
        )
        stale_rows = await self.db.execute(
            select(Invitation.role, func.count())
            .where(Invitation.school_id == school_id, _stale_pending(now))
            .group_by(Invitation.role)
        )

        by_role: dict[str, StatusCounts] = {}
        for role, status, count in rows.all():
            counts = by_role.setdefault(role, StatusCounts())
            key = InvitationStatus(status).value
            setattr(counts, key, getattr(counts, key) + int(count))
            counts.total += int(count)

        # Stale pending rows are reported as expired
        for role, stale in stale_rows.all():
            counts = by_role.setdefault(role, StatusCounts())
            counts.pending -= int(stale)
            counts.expired += int(stale)

        return by_role

    async def get_school_statistics(self, school_id: str) -> dict:
        by_role = await self._count_by_status(school_id, datetime.now(UTC))
        totals = StatusCounts()
        for counts in by_role.values():
            for field in StatusCounts.model_fields:
                setattr(totals, field, getattr(totals, field) + getattr(counts, field))
        return {
            "school_id": school_id,
            **totals.model_dump(),
            "by_role": {role: counts.model_dump() for role, counts in by_role.items()},
        }

    @staticmethod
    def list_cache_key(
        school_id: str,
        status: str | None,
        role: str | None,
        page: int,
        limit: int,
    ) -> str:
        return f"invitations:{school_id}:{status or 'all'}:{role or 'all'}:{page}:{limit}"

    async def list_invitations(
        self,
        school_id: str,
        status: InvitationStatus | None = None,
        role: InvitationRole | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Paginated invitations for a school, cache-aside.

        Served from the ``invitation`` namespace when cached; otherwise read
        from the database and cached for the namespace TTL.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        status_value = InvitationStatus(status).value if status else None
        role_value = _role_value(role) if role else None

        cache_key = self.list_cache_key(school_id, status_value, role_value, page, limit)
        cached = await self.cache.get(NAMESPACE_INVITATION, cache_key)
        if cached is not None:
            return cached

        now = datetime.now(UTC)
        filters = [Invitation.school_id == school_id]
        if status_value:
            filters.append(_effective_status_filter(InvitationStatus(status_value), now))
        if role_value:
            filters.append(Invitation.role == role_value)

        total = int(
            await self.db.scalar(select(func.count()).select_from(Invitation).where(*filters))
            or 0
        )
        result = await self.db.execute(
            select(Invitation)
            .where(*filters)
            .order_by(Invitation.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        invitations = list(result.scalars().all())

        summary = StatusCounts()
        for counts in (await self._count_by_status(school_id, now)).values():
            for field in StatusCounts.model_fields:
                setattr(summary, field, getattr(summary, field) + getattr(counts, field))

        payload = {
            "invitations": [
                InvitationSummary.from_invitation(inv).model_dump(mode="json")
                for inv in invitations
            ],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
            "summary": summary.model_dump(),
        }
        await self.cache.set(NAMESPACE_INVITATION, cache_key, payload)
        return payload

    async def invalidate_invitation_caches(self, school_id: str) -> int:
        """Drop cached invitation lists and dashboard analytics for a school.

        Advisory: a failed invalidation is logged by the cache client and
        never fails the caller.
        """
        deleted = await self.cache.invalidate_school_cache(school_id)
        log_json(
            logger,
            logging.DEBUG,
            "invitation_cache_invalidated",
            school_id=school_id,
            deleted=deleted,
        )
        return deleted
