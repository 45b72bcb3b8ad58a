"""Invitation status workflow state machine."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from educonnect.models.enums import InvitationStatus

if TYPE_CHECKING:
    from educonnect.models.invitation import Invitation

# Valid status transitions for the invitation lifecycle
# Key: current status, Value: list of allowed next statuses
VALID_TRANSITIONS: dict[InvitationStatus, list[InvitationStatus]] = {
    InvitationStatus.PENDING: [
        InvitationStatus.ACCEPTED,
        InvitationStatus.CANCELLED,
        InvitationStatus.EXPIRED,
        InvitationStatus.PENDING,  # resend refreshes a pending row in place
    ],
    InvitationStatus.EXPIRED: [InvitationStatus.PENDING],  # resend revives
    InvitationStatus.ACCEPTED: [],  # Terminal state
    InvitationStatus.CANCELLED: [],  # Terminal state
}


def is_valid_transition(from_status: InvitationStatus, to_status: InvitationStatus) -> bool:
    """Check if a status transition is valid.

    Examples:
        >>> is_valid_transition(InvitationStatus.PENDING, InvitationStatus.ACCEPTED)
        True
        >>> is_valid_transition(InvitationStatus.EXPIRED, InvitationStatus.ACCEPTED)
        False
        >>> is_valid_transition(InvitationStatus.CANCELLED, InvitationStatus.PENDING)
        False
    """
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def get_allowed_transitions(from_status: InvitationStatus) -> list[InvitationStatus]:
    """Get list of allowed transitions from a given status."""
    return VALID_TRANSITIONS.get(from_status, [])


def effective_status(invitation: Invitation, now: datetime | None = None) -> InvitationStatus:
    """Status as seen by every read-side decision.

    A row whose stored status is still ``pending`` but whose ``expires_at``
    has passed is reported as ``expired`` even before the sweep flips it.
    Only ``cancel`` and ``resend`` look at the raw stored status instead.
    """
    status = InvitationStatus(invitation.status)
    if status != InvitationStatus.PENDING:
        return status

    now = now or datetime.now(UTC)
    if invitation.expires_at is not None and now > invitation.expires_at:
        return InvitationStatus.EXPIRED
    return InvitationStatus.PENDING
