from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

from opsdesk.tickets.models import Ticket

from .events import TITLES, NotificationEvent
from .repository import NotificationRecord, NotificationRepository

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(
        self, event: NotificationEvent, ticket: Ticket, extra: Mapping[str, Any]
    ) -> None:
        ...


def describe(event: NotificationEvent, ticket: Ticket, extra: Mapping[str, Any]) -> str:
    """Human readable one-liner for a ticket event."""

    message = f"Ticket #{ticket.ticket_num}: {ticket.title}"
    if event is NotificationEvent.VERIFICATION_COMPLETED:
        outcome = "approved" if extra.get("approved") else "rejected"
        return f"{message} - verification {outcome}"
    if event is NotificationEvent.TICKET_UPDATED:
        return f"{message} - {ticket.status.value} ({ticket.completion}%)"
    if event is not NotificationEvent.TICKET_CREATED:
        return f"{message} - {event.value.replace('_', ' ')}"
    return message


class LoggingNotifier:
    """Notifier that only writes events to the log."""

    async def notify(
        self, event: NotificationEvent, ticket: Ticket, extra: Mapping[str, Any]
    ) -> None:
        logger.info("%s: %s", event.value, describe(event, ticket, extra))


class InAppNotifier:
    """Store one in-app notification per recipient, skipping the acting user."""

    def __init__(self, repository: NotificationRepository, *, roles: Sequence[str]) -> None:
        self._repository = repository
        self._roles = tuple(roles)

    async def notify(
        self, event: NotificationEvent, ticket: Ticket, extra: Mapping[str, Any]
    ) -> None:
        actor_id = extra.get("actor_id")
        recipients = await self._repository.recipients(self._roles)
        message = describe(event, ticket, extra)
        records = [
            NotificationRecord(
                user_id=user_id,
                title=TITLES[event],
                message=message,
                type=event.value,
                related_id=None if event is NotificationEvent.TICKET_DELETED else ticket.id,
            )
            for user_id in recipients
            if user_id != actor_id
        ]
        await self._repository.create_bulk(records)
        logger.debug("Stored %d %s notifications for %s", len(records), event.value, ticket.ticket_num)
