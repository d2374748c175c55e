from __future__ import annotations

from typing import TYPE_CHECKING

from .models import Relationship

if TYPE_CHECKING:
    from opsdesk.tickets.models import Ticket


def classify(ticket: Ticket, user_id: int) -> Relationship:
    """Return every relationship ``user_id`` has with ``ticket``."""

    relationship = Relationship.NONE
    if ticket.created_by is not None and ticket.created_by == user_id:
        relationship |= Relationship.CREATOR
    if ticket.assigned_to is not None and ticket.assigned_to == user_id:
        relationship |= Relationship.ASSIGNEE
    if ticket.verified_by is not None and ticket.verified_by == user_id:
        relationship |= Relationship.VERIFIER
    return relationship
