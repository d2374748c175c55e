from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, Flag, auto


@dataclass(frozen=True, slots=True)
class CallerContext:
    """Identity of the user performing a request, as resolved upstream."""

    user_id: int
    role_id: int


class RoleCapability(str, Enum):
    """Coarse authority tiers derived from a role's permission bundle."""

    ADMINISTRATIVE = "administrative"
    ELEVATED = "elevated"
    STANDARD = "standard"

    @property
    def is_privileged(self) -> bool:
        return self is not RoleCapability.STANDARD


class Relationship(Flag):
    """How a user relates to a ticket. Several flags may be set at once."""

    NONE = 0
    CREATOR = auto()
    ASSIGNEE = auto()
    VERIFIER = auto()


class TicketOperation(str, Enum):
    """Mutating ticket operations that must pass the transition authorizer."""

    SET_STATUS = "set_status"
    REASSIGN = "reassign"
    UPDATE_DETAILS = "update_details"
    REQUEST_VERIFICATION = "request_verification"
    DECIDE_VERIFICATION = "decide_verification"
    SKIP_VERIFICATION = "skip_verification"
    SETUP_VERIFICATION = "setup_verification"
    RESET_VERIFICATION = "reset_verification"


class DenyReason(str, Enum):
    """Machine readable reasons attached to a denied authorization decision."""

    INSUFFICIENT_PERMISSION = "insufficient_permission"
    NOT_OWNER = "not_owner"
    TICKET_CLOSED = "ticket_closed"


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    """Outcome of an authorization check: allowed, or denied with a reason."""

    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AuthorizationDecision":
        return cls(allowed=False, reason=reason)
