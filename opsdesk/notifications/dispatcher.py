from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from opsdesk.metrics import register_default_metrics
from opsdesk.metrics.registry import MetricsRegistry
from opsdesk.tickets.models import Ticket

from .events import NotificationEvent
from .notifiers import Notifier

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fire-and-forget delivery of ticket events.

    ``dispatch`` schedules the notifier on the running loop and returns at once.
    Delivery failures are logged and counted, never raised to the caller.
    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        enabled: bool = True,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._notifier = notifier
        self._enabled = enabled
        self._registry = register_default_metrics(registry)
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(
        self,
        event: NotificationEvent,
        ticket: Ticket,
        extra: Mapping[str, Any] | None = None,
    ) -> asyncio.Task[None] | None:
        if not self._enabled:
            return None
        task = asyncio.get_running_loop().create_task(
            self._deliver(event, ticket, dict(extra or {})),
            name=f"notify:{event.value}:{ticket.id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(
        self, event: NotificationEvent, ticket: Ticket, extra: dict[str, Any]
    ) -> None:
        try:
            await self._notifier.notify(event, ticket, extra)
        except Exception:
            self._registry.counter("ticket_notification_failures_total").inc(
                labels={"event": event.value}
            )
            logger.exception("Failed to deliver %s notification for ticket %s", event.value, ticket.ticket_num)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending))
