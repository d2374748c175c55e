from __future__ import annotations

from opsdesk.access.models import DenyReason


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketValidationError(TicketServiceError, ValueError):
    """Raised when input is malformed, e.g. an unknown status or out of range completion."""


class UnknownReferenceError(TicketServiceError):
    """Raised when a referenced user or asset does not exist."""

    def __init__(self, kind: str, reference_id: int) -> None:
        super().__init__(f"{kind.capitalize()} {reference_id} not found")
        self.kind = kind
        self.reference_id = reference_id


class TicketNotFoundError(TicketServiceError):
    """Raised when an operation targets a non-existent ticket."""


class InvalidTicketStateError(TicketServiceError):
    """Raised when an operation is not legal for the ticket's current state."""

    def __init__(self, message: str, *, reason: DenyReason | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class TicketAuthorizationError(TicketServiceError):
    """Raised when the transition authorizer denies an operation."""

    def __init__(self, reason: DenyReason, message: str | None = None) -> None:
        super().__init__(message or f"Operation denied: {reason.value}")
        self.reason = reason


class DependencyError(TicketServiceError):
    """Raised when a collaborator (database, permission lookup) itself failed."""
