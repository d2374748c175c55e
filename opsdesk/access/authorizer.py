"""Transition authorizer: decides whether a caller may apply a ticket transition.

Rules are evaluated in order and the first match wins:

0. ``reset_verification`` on a closed ticket is denied with ``ticket_closed``
   before any permission is consulted.
1. Administrative roles are allowed everything else.
2. ``set_status``/``reassign``/``update_details``: elevated roles only while the
   ticket is unassigned or assigned to them; every other role only as creator.
3. ``request_verification``/``setup_verification``: creator or elevated role.
4. ``decide_verification``: elevated role or creator.
5. ``skip_verification``: elevated role only. Ownership never grants it.
6. ``reset_verification``: elevated role, creator, or the recorded verifier.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opsdesk.metrics import register_default_metrics
from opsdesk.metrics.registry import MetricsRegistry
from opsdesk.tickets.errors import InvalidTicketStateError, TicketAuthorizationError
from opsdesk.tickets.state import TicketStatus

from .models import (
    AuthorizationDecision,
    CallerContext,
    DenyReason,
    Relationship,
    RoleCapability,
    TicketOperation,
)
from .ownership import classify
from .permissions import CapabilityResolver

if TYPE_CHECKING:
    from opsdesk.tickets.models import Ticket

logger = logging.getLogger(__name__)

_OWNERSHIP_SCOPED = frozenset(
    {TicketOperation.SET_STATUS, TicketOperation.REASSIGN, TicketOperation.UPDATE_DETAILS}
)
_CREATOR_OR_PRIVILEGED = frozenset(
    {
        TicketOperation.REQUEST_VERIFICATION,
        TicketOperation.SETUP_VERIFICATION,
        TicketOperation.DECIDE_VERIFICATION,
    }
)


class TransitionAuthorizer:
    """Compose permission resolution, ownership and ticket state into a decision."""

    def __init__(
        self,
        capabilities: CapabilityResolver,
        *,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._capabilities = capabilities
        self._registry = register_default_metrics(registry)

    async def authorize(
        self,
        operation: TicketOperation,
        ticket: Ticket,
        caller: CallerContext,
    ) -> AuthorizationDecision:
        if operation is TicketOperation.RESET_VERIFICATION and ticket.status is TicketStatus.CLOSED:
            return AuthorizationDecision.deny(DenyReason.TICKET_CLOSED)

        capability = await self._capabilities.resolve(caller.role_id)
        if capability is RoleCapability.ADMINISTRATIVE:
            return AuthorizationDecision.allow()

        relationship = classify(ticket, caller.user_id)
        elevated = capability is RoleCapability.ELEVATED

        if operation in _OWNERSHIP_SCOPED:
            if elevated:
                if ticket.assigned_to is None or Relationship.ASSIGNEE in relationship:
                    return AuthorizationDecision.allow()
                return AuthorizationDecision.deny(DenyReason.NOT_OWNER)
            if Relationship.CREATOR in relationship:
                return AuthorizationDecision.allow()
            return AuthorizationDecision.deny(DenyReason.NOT_OWNER)

        if operation in _CREATOR_OR_PRIVILEGED:
            if elevated or Relationship.CREATOR in relationship:
                return AuthorizationDecision.allow()
            return AuthorizationDecision.deny(DenyReason.NOT_OWNER)

        if operation is TicketOperation.SKIP_VERIFICATION:
            if elevated:
                return AuthorizationDecision.allow()
            return AuthorizationDecision.deny(DenyReason.INSUFFICIENT_PERMISSION)

        if operation is TicketOperation.RESET_VERIFICATION:
            # A verifier cleared by an earlier reset no longer matches.
            if elevated or relationship & (Relationship.CREATOR | Relationship.VERIFIER):
                return AuthorizationDecision.allow()
            return AuthorizationDecision.deny(DenyReason.NOT_OWNER)

        return AuthorizationDecision.deny(DenyReason.INSUFFICIENT_PERMISSION)

    async def enforce(
        self,
        operation: TicketOperation,
        ticket: Ticket,
        caller: CallerContext,
    ) -> None:
        """Raise the typed error matching a denied decision."""

        decision = await self.authorize(operation, ticket, caller)
        if decision.allowed:
            return

        reason = decision.reason or DenyReason.INSUFFICIENT_PERMISSION
        self._registry.counter("ticket_authorization_denials_total").inc(
            labels={"operation": operation.value, "reason": reason.value}
        )
        logger.info(
            "Denied %s on ticket %s for user %s (role %s): %s",
            operation.value,
            ticket.ticket_num,
            caller.user_id,
            caller.role_id,
            reason.value,
        )
        if reason is DenyReason.TICKET_CLOSED:
            raise InvalidTicketStateError("Cannot reset verification for closed tickets", reason=reason)
        raise TicketAuthorizationError(reason)
