from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from opentelemetry import trace

from opsdesk.access.authorizer import TransitionAuthorizer
from opsdesk.access.models import CallerContext, DenyReason, TicketOperation
from opsdesk.access.permissions import PermissionResolver
from opsdesk.metrics import register_default_metrics
from opsdesk.metrics.registry import MetricsRegistry
from opsdesk.notifications.dispatcher import NotificationDispatcher
from opsdesk.notifications.events import NotificationEvent

from .errors import (
    TicketAuthorizationError,
    TicketNotFoundError,
    TicketValidationError,
    UnknownReferenceError,
)
from .models import DEFAULT_PRIORITY, NewTicket, Ticket, TicketFilters
from .repository import TicketRepository
from .state import TicketStateMachine, VerificationStatus
from .verification import VerificationStateMachine

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)

DEFAULT_DELETE_PERMISSION = "tickets:delete"

TicketChange = Callable[[Ticket, datetime], Awaitable[Ticket]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level orchestration for ticket lifecycle operations.

    Every mutation follows the same sequence: load the ticket, ask the
    transition authorizer, validate and apply the change, persist it in one
    statement, then hand a notification to the dispatcher without waiting.
    """

    def __init__(
        self,
        repository: TicketRepository,
        authorizer: TransitionAuthorizer,
        dispatcher: NotificationDispatcher,
        *,
        permissions: PermissionResolver,
        delete_permission: str = DEFAULT_DELETE_PERMISSION,
        registry: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._authorizer = authorizer
        self._dispatcher = dispatcher
        self._permissions = permissions
        self._delete_permission = delete_permission
        self._registry = register_default_metrics(registry)
        self._clock = clock

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(self, fields: NewTicket, caller: CallerContext) -> Ticket:
        for name in ("title", "description", "type"):
            if not (getattr(fields, name) or "").strip():
                raise TicketValidationError(f"{name.capitalize()} is required")
        if not fields.priority:
            fields = replace(fields, priority=DEFAULT_PRIORITY)
        if fields.asset_id is not None and not await self._repository.asset_exists(fields.asset_id):
            raise UnknownReferenceError("asset", fields.asset_id)

        with _tracer.start_as_current_span("tickets.create"):
            ticket = await self._repository.create_ticket(
                fields,
                created_by=caller.user_id,
                status=TicketStateMachine.initial_state(),
                completion=0,
                verification_status=VerificationStatus.NOT_REQUIRED,
                created_at=self._clock(),
            )
        logger.info("Ticket %s created by user %s", ticket.ticket_num, caller.user_id)
        self._dispatcher.dispatch(
            NotificationEvent.TICKET_CREATED, ticket, {"actor_id": caller.user_id}
        )
        return ticket

    async def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(self, filters: TicketFilters | None = None) -> list[Ticket]:
        return await self._repository.list_tickets(filters)

    async def set_status(
        self,
        ticket_id: int,
        caller: CallerContext,
        *,
        status: str,
        completion: int,
        assigned_to: int | None = None,
    ) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            target = TicketStateMachine.coerce_status(status)
            TicketStateMachine.check_completion(completion)
            if assigned_to is not None:
                await self._require_user(assigned_to)
            return TicketStateMachine.set_status(ticket, target, completion, assigned_to, now=now)

        return await self._apply(
            TicketOperation.SET_STATUS,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.TICKET_UPDATED,
        )

    async def reassign(self, ticket_id: int, caller: CallerContext, *, assigned_to: int) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            await self._require_user(assigned_to)
            return TicketStateMachine.reassign(ticket, assigned_to, now=now)

        return await self._apply(
            TicketOperation.REASSIGN,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.TICKET_REASSIGNED,
            extra={"assigned_to": assigned_to},
        )

    async def update_details(
        self,
        ticket_id: int,
        caller: CallerContext,
        *,
        title: str | None = None,
        description: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        asset_id: int | None = None,
        is_internal: bool | None = None,
    ) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            if asset_id is not None and not await self._repository.asset_exists(asset_id):
                raise UnknownReferenceError("asset", asset_id)
            return TicketStateMachine.update_details(
                ticket,
                title=title,
                description=description,
                type=type,
                priority=priority,
                asset_id=asset_id,
                is_internal=is_internal,
                now=now,
            )

        return await self._apply(
            TicketOperation.UPDATE_DETAILS,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.TICKET_UPDATED,
        )

    async def request_verification(
        self, ticket_id: int, caller: CallerContext, *, notes: str = ""
    ) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            return VerificationStateMachine.request(ticket, notes, now=now)

        return await self._apply(
            TicketOperation.REQUEST_VERIFICATION,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.VERIFICATION_REQUESTED,
        )

    async def decide_verification(
        self,
        ticket_id: int,
        caller: CallerContext,
        *,
        approved: bool,
        notes: str | None = None,
        verifier_id: int | None = None,
    ) -> Ticket:
        verifier = caller.user_id if verifier_id is None else verifier_id

        async def change(ticket: Ticket, now: datetime) -> Ticket:
            if verifier != caller.user_id:
                await self._require_user(verifier)
            return VerificationStateMachine.decide(ticket, verifier, approved, notes, now=now)

        return await self._apply(
            TicketOperation.DECIDE_VERIFICATION,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.VERIFICATION_COMPLETED,
            extra={"approved": approved, "verifier_id": verifier},
        )

    async def skip_verification(self, ticket_id: int, caller: CallerContext) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            return VerificationStateMachine.skip(ticket, now=now)

        ticket = await self._apply(
            TicketOperation.SKIP_VERIFICATION,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.VERIFICATION_SKIPPED,
        )
        logger.info("Verification skipped for ticket %s by user %s", ticket.ticket_num, caller.user_id)
        return ticket

    async def setup_verification(
        self,
        ticket_id: int,
        caller: CallerContext,
        *,
        status: str = VerificationStatus.PENDING.value,
        notes: str = "",
    ) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            return VerificationStateMachine.setup(ticket, status, notes, now=now)

        return await self._apply(
            TicketOperation.SETUP_VERIFICATION,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.VERIFICATION_SETUP,
        )

    async def reset_verification(self, ticket_id: int, caller: CallerContext) -> Ticket:
        async def change(ticket: Ticket, now: datetime) -> Ticket:
            return VerificationStateMachine.reset(ticket, caller.user_id, now=now)

        return await self._apply(
            TicketOperation.RESET_VERIFICATION,
            ticket_id,
            caller,
            change,
            event=NotificationEvent.VERIFICATION_RESET,
        )

    async def delete_ticket(self, ticket_id: int, caller: CallerContext) -> None:
        """Remove a ticket outright. This bypasses the lifecycle rules on purpose."""

        ticket = await self.get_ticket(ticket_id)
        if not await self._permissions.has_permission(caller.role_id, self._delete_permission):
            raise TicketAuthorizationError(
                DenyReason.INSUFFICIENT_PERMISSION, "Only administrators can delete tickets"
            )
        if not await self._repository.delete_ticket(ticket_id):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        logger.info("Ticket %s (ID: %s) deleted by user %s", ticket.ticket_num, ticket.id, caller.user_id)
        self._dispatcher.dispatch(
            NotificationEvent.TICKET_DELETED, ticket, {"actor_id": caller.user_id}
        )

    async def _apply(
        self,
        operation: TicketOperation,
        ticket_id: int,
        caller: CallerContext,
        change: TicketChange,
        *,
        event: NotificationEvent,
        extra: Mapping[str, Any] | None = None,
    ) -> Ticket:
        with _tracer.start_as_current_span(f"tickets.{operation.value}") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("caller.user_id", caller.user_id)

            current = await self.get_ticket(ticket_id)
            await self._authorizer.enforce(operation, current, caller)

            updated = await change(current, self._clock())
            persisted = await self._repository.persist_ticket(updated)
            if persisted is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")

        self._registry.counter("ticket_transitions_total").inc(labels={"operation": operation.value})
        logger.info(
            "Applied %s to ticket %s by user %s: status=%s completion=%s verification=%s",
            operation.value,
            persisted.ticket_num,
            caller.user_id,
            persisted.status.value,
            persisted.completion,
            persisted.verification_status.value,
        )
        payload: dict[str, Any] = {
            "actor_id": caller.user_id,
            "previous_status": current.status.value,
            "previous_assignee": current.assigned_to,
        }
        payload.update(extra or {})
        self._dispatcher.dispatch(event, persisted, payload)
        return persisted

    async def _require_user(self, user_id: int) -> None:
        if not await self._repository.user_exists(user_id):
            raise UnknownReferenceError("user", user_id)
