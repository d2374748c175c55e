from __future__ import annotations

from enum import Enum


class NotificationEvent(str, Enum):
    """Ticket events fanned out to the notifier."""

    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TICKET_REASSIGNED = "ticket_reassigned"
    TICKET_DELETED = "ticket_deleted"
    VERIFICATION_REQUESTED = "verification_requested"
    VERIFICATION_COMPLETED = "verification_completed"
    VERIFICATION_SKIPPED = "verification_skipped"
    VERIFICATION_SETUP = "verification_setup"
    VERIFICATION_RESET = "verification_reset"


TITLES: dict[NotificationEvent, str] = {
    NotificationEvent.TICKET_CREATED: "New Ticket Created",
    NotificationEvent.TICKET_UPDATED: "Ticket Updated",
    NotificationEvent.TICKET_REASSIGNED: "Ticket Reassigned",
    NotificationEvent.TICKET_DELETED: "Ticket Deleted",
    NotificationEvent.VERIFICATION_REQUESTED: "Verification Requested",
    NotificationEvent.VERIFICATION_COMPLETED: "Verification Completed",
    NotificationEvent.VERIFICATION_SKIPPED: "Verification Skipped",
    NotificationEvent.VERIFICATION_SETUP: "Verification Set Up",
    NotificationEvent.VERIFICATION_RESET: "Verification Reset",
}
