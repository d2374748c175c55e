from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from .errors import TicketValidationError

if TYPE_CHECKING:
    from .models import Ticket


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    RECEIVED = "received"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class VerificationStatus(str, Enum):
    """States of the sign-off workflow layered on top of the ticket status."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


MIN_COMPLETION = 0
MAX_COMPLETION = 100


class TicketStateMachine:
    """Apply primary lifecycle changes: status, completion and assignment.

    The machine is deliberately permissive. Every status is reachable from every
    other one (closing straight from ``open`` is a supported workflow), so there is
    no edge table, only value validation. ``closed_at`` is stamped the first time a
    ticket closes and is never cleared afterwards.
    """

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def coerce_status(cls, value: TicketStatus | str) -> TicketStatus:
        try:
            return TicketStatus(value)
        except ValueError as exc:
            raise TicketValidationError(f"Invalid status: {value!r}") from exc

    @classmethod
    def check_completion(cls, completion: int) -> int:
        if isinstance(completion, bool) or not isinstance(completion, int):
            raise TicketValidationError(f"Completion must be an integer, got {completion!r}")
        if completion < MIN_COMPLETION or completion > MAX_COMPLETION:
            raise TicketValidationError(
                f"Completion must be between {MIN_COMPLETION} and {MAX_COMPLETION}"
            )
        return completion

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus | str) -> bool:
        try:
            cls.coerce_status(new)
        except TicketValidationError:
            return False
        return True

    @classmethod
    def set_status(
        cls,
        ticket: Ticket,
        status: TicketStatus | str,
        completion: int,
        assigned_to: int | None,
        *,
        now: datetime,
    ) -> Ticket:
        target = cls.coerce_status(status)
        cls.check_completion(completion)
        return replace(
            ticket,
            status=target,
            completion=completion,
            assigned_to=assigned_to,
            closed_at=stamp_closed_at(ticket, target, now),
            updated_at=now,
        )

    @classmethod
    def reassign(cls, ticket: Ticket, assigned_to: int, *, now: datetime) -> Ticket:
        return replace(ticket, assigned_to=assigned_to, updated_at=now)

    @classmethod
    def update_details(
        cls,
        ticket: Ticket,
        *,
        title: str | None = None,
        description: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        asset_id: int | None = None,
        is_internal: bool | None = None,
        now: datetime,
    ) -> Ticket:
        # Empty strings keep the stored value, matching partial updates from the UI.
        return replace(
            ticket,
            title=title or ticket.title,
            description=description or ticket.description,
            type=type or ticket.type,
            priority=priority or ticket.priority,
            asset_id=asset_id if asset_id is not None else ticket.asset_id,
            is_internal=is_internal if is_internal is not None else ticket.is_internal,
            updated_at=now,
        )


def stamp_closed_at(ticket: Ticket, status: TicketStatus, now: datetime) -> datetime | None:
    """Return the ``closed_at`` value a ticket should carry after moving to ``status``."""

    if ticket.closed_at is not None:
        return ticket.closed_at
    if status is TicketStatus.CLOSED:
        return now
    return None
