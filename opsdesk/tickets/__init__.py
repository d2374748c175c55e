"""Ticket lifecycle domain: models, state machines and errors."""

from .errors import (
    DependencyError,
    InvalidTicketStateError,
    TicketAuthorizationError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
    UnknownReferenceError,
)
from .models import NewTicket, Ticket, TicketFilters
from .state import TicketStateMachine, TicketStatus, VerificationStatus
from .verification import VerificationStateMachine

__all__ = [
    "DependencyError",
    "InvalidTicketStateError",
    "NewTicket",
    "Ticket",
    "TicketAuthorizationError",
    "TicketFilters",
    "TicketNotFoundError",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketValidationError",
    "UnknownReferenceError",
    "VerificationStateMachine",
    "VerificationStatus",
]
