from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import pytest

from opsdesk.access.authorizer import TransitionAuthorizer
from opsdesk.access.models import CallerContext
from opsdesk.access.permissions import CapabilityResolver, PermissionResolver
from opsdesk.metrics.registry import MetricsRegistry
from opsdesk.notifications.dispatcher import NotificationDispatcher
from opsdesk.notifications.events import NotificationEvent
from opsdesk.tickets.errors import DependencyError
from opsdesk.tickets.models import NewTicket, Ticket, TicketFilters
from opsdesk.tickets.repository import format_ticket_number
from opsdesk.tickets.service import TicketService
from opsdesk.tickets.state import TicketStatus, VerificationStatus

ADMIN_ROLE = 1
AGENT_ROLE = 2
STAFF_ROLE = 3

CREATOR = 10
AGENT = 20
OTHER = 30
ADMIN = 40

ROLE_PERMISSIONS: dict[int, set[str]] = {
    ADMIN_ROLE: {"system:admin", "tickets:assign", "tickets:delete"},
    AGENT_ROLE: {"tickets:assign"},
    STAFF_ROLE: {"tickets:create"},
}

BASE_TIME = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_ticket(**overrides: Any) -> Ticket:
    values: dict[str, Any] = {
        "id": 1,
        "ticket_num": "TCK-2025-0001",
        "title": "Printer offline",
        "description": "Second floor printer does not respond",
        "type": "hardware",
        "priority": "normal",
        "status": TicketStatus.OPEN,
        "completion": 0,
        "created_by": CREATOR,
        "assigned_to": None,
        "asset_id": None,
        "is_internal": True,
        "verification_status": VerificationStatus.NOT_REQUIRED,
        "verification_notes": "",
        "verified_by": None,
        "verified_at": None,
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
        "closed_at": None,
    }
    values.update(overrides)
    return Ticket(**values)


class FakePermissionLookup:
    def __init__(self, grants: Mapping[int, set[str]] | None = None) -> None:
        self.grants = {role: set(perms) for role, perms in (grants or ROLE_PERMISSIONS).items()}
        self.fail = False
        self.calls: list[tuple[int, str]] = []

    async def role_has_permission(self, role_id: int, permission: str) -> bool:
        self.calls.append((role_id, permission))
        if self.fail:
            raise DependencyError("Permission lookup failed: connection refused")
        return permission in self.grants.get(role_id, set())


class FakeTicketRepository:
    """In-memory stand-in mirroring the SQL semantics of ``TicketRepository``."""

    def __init__(self) -> None:
        self.tickets: dict[int, Ticket] = {}
        self.users: set[int] = {CREATOR, AGENT, OTHER, ADMIN}
        self.assets: set[int] = {500}
        self.persist_calls = 0
        self.fail_persist = False
        self._next_id = 1

    def add(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = ticket
        self._next_id = max(self._next_id, ticket.id + 1)
        return ticket

    async def ensure_schema(self) -> None:
        return None

    async def create_ticket(
        self,
        fields: NewTicket,
        *,
        created_by: int,
        status: TicketStatus,
        completion: int,
        verification_status: VerificationStatus,
        created_at: datetime,
    ) -> Ticket:
        ticket_id = self._next_id
        self._next_id += 1
        return self.add(
            Ticket(
                id=ticket_id,
                ticket_num=format_ticket_number("TCK", created_at.year, ticket_id),
                title=fields.title,
                description=fields.description,
                type=fields.type,
                priority=fields.priority,
                status=status,
                completion=completion,
                created_by=created_by,
                assigned_to=None,
                asset_id=fields.asset_id,
                is_internal=fields.is_internal,
                verification_status=verification_status,
                verification_notes="",
                verified_by=None,
                verified_at=None,
                created_at=created_at,
                updated_at=created_at,
            )
        )

    async def get_ticket(self, ticket_id: int) -> Ticket | None:
        return self.tickets.get(ticket_id)

    async def list_tickets(self, filters: TicketFilters | None = None) -> list[Ticket]:
        filters = filters or TicketFilters()
        tickets = [
            ticket
            for ticket in self.tickets.values()
            if (filters.status is None or ticket.status is filters.status)
            and (filters.assigned_to is None or ticket.assigned_to == filters.assigned_to)
            and (filters.created_by is None or ticket.created_by == filters.created_by)
        ]
        return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)

    async def persist_ticket(self, ticket: Ticket) -> Ticket | None:
        self.persist_calls += 1
        if self.fail_persist:
            raise DependencyError("Persisting ticket failed: connection reset")
        stored = self.tickets.get(ticket.id)
        if stored is None:
            return None
        persisted = replace(ticket, closed_at=stored.closed_at or ticket.closed_at)
        self.tickets[ticket.id] = persisted
        return persisted

    async def delete_ticket(self, ticket_id: int) -> bool:
        return self.tickets.pop(ticket_id, None) is not None

    async def user_exists(self, user_id: int) -> bool:
        return user_id in self.users

    async def asset_exists(self, asset_id: int) -> bool:
        return asset_id in self.assets


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[NotificationEvent, Ticket, dict[str, Any]]] = []
        self.fail = False

    async def notify(
        self, event: NotificationEvent, ticket: Ticket, extra: Mapping[str, Any]
    ) -> None:
        if self.fail:
            raise RuntimeError("notification backend unavailable")
        self.events.append((event, ticket, dict(extra)))


class SteppingClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(minutes=1)
        return self.now


@pytest.fixture
def registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def permission_lookup() -> FakePermissionLookup:
    return FakePermissionLookup()


@pytest.fixture
def capabilities(permission_lookup: FakePermissionLookup) -> CapabilityResolver:
    return CapabilityResolver(PermissionResolver(permission_lookup))


@pytest.fixture
def authorizer(capabilities: CapabilityResolver, registry: MetricsRegistry) -> TransitionAuthorizer:
    return TransitionAuthorizer(capabilities, registry=registry)


@pytest.fixture
def ticket_repository() -> FakeTicketRepository:
    return FakeTicketRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ticket_service(
    ticket_repository: FakeTicketRepository,
    authorizer: TransitionAuthorizer,
    capabilities: CapabilityResolver,
    notifier: RecordingNotifier,
    registry: MetricsRegistry,
) -> TicketService:
    return TicketService(
        ticket_repository,
        authorizer,
        NotificationDispatcher(notifier, registry=registry),
        permissions=capabilities.permissions,
        registry=registry,
        clock=SteppingClock(),
    )


@pytest.fixture
def creator() -> CallerContext:
    return CallerContext(user_id=CREATOR, role_id=STAFF_ROLE)


@pytest.fixture
def agent() -> CallerContext:
    return CallerContext(user_id=AGENT, role_id=AGENT_ROLE)


@pytest.fixture
def outsider() -> CallerContext:
    return CallerContext(user_id=OTHER, role_id=STAFF_ROLE)


@pytest.fixture
def admin() -> CallerContext:
    return CallerContext(user_id=ADMIN, role_id=ADMIN_ROLE)


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)
