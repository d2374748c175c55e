from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .state import TicketStatus, VerificationStatus

DEFAULT_PRIORITY = "normal"


@dataclass(slots=True)
class Ticket:
    """Aggregate representing an IT support request."""

    id: int
    ticket_num: str
    title: str
    description: str
    type: str
    priority: str
    status: TicketStatus
    completion: int
    created_by: int | None
    assigned_to: int | None
    asset_id: int | None
    is_internal: bool
    verification_status: VerificationStatus
    verification_notes: str
    verified_by: int | None
    verified_at: datetime | None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None = None


@dataclass(slots=True)
class NewTicket:
    """Caller supplied fields for a ticket that has not been stored yet."""

    title: str
    description: str
    type: str
    priority: str = DEFAULT_PRIORITY
    asset_id: int | None = None
    is_internal: bool = True


@dataclass(slots=True)
class TicketFilters:
    """Plain filters for listing tickets."""

    status: TicketStatus | None = None
    type: str | None = None
    priority: str | None = None
    assigned_to: int | None = None
    created_by: int | None = None
    limit: int = 0
    offset: int = 0
