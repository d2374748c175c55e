"""Verification sub-workflow: the sign-off step that gates final closure."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from .errors import InvalidTicketStateError, TicketValidationError
from .models import Ticket
from .state import TicketStatus, VerificationStatus, stamp_closed_at

# Policy markers written into ``completion`` by the verification workflow.
PENDING_REVIEW_COMPLETION = 90
REJECTED_COMPLETION = 50
CLOSED_COMPLETION = 100

RESET_NOTE_TEMPLATE = "Verification reset by user {user_id}"

VERIFIABLE_STATUSES = frozenset({TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED})
SETUP_TARGETS = frozenset({VerificationStatus.PENDING, VerificationStatus.NOT_REQUIRED})


class VerificationStateMachine:
    """Transitions of ``verification_status`` and the primary fields they drag along.

    ``not_required -> pending -> {verified, rejected}``, plus ``reset`` from any
    state other than ``not_required`` back to ``pending``. Resetting re-opens
    review, it never waives it.
    """

    @classmethod
    def request(cls, ticket: Ticket, notes: str, *, now: datetime) -> Ticket:
        if ticket.status not in VERIFIABLE_STATUSES:
            raise InvalidTicketStateError(
                f"Ticket must be resolved or in progress to request verification (status: {ticket.status.value})"
            )
        return replace(
            ticket,
            verification_status=VerificationStatus.PENDING,
            verification_notes=notes,
            status=TicketStatus.RESOLVED,
            completion=PENDING_REVIEW_COMPLETION,
            updated_at=now,
        )

    @classmethod
    def decide(
        cls,
        ticket: Ticket,
        verifier_id: int,
        approved: bool,
        notes: str | None,
        *,
        now: datetime,
    ) -> Ticket:
        if ticket.verification_status is not VerificationStatus.PENDING:
            raise InvalidTicketStateError(
                f"Ticket is not pending verification (verification: {ticket.verification_status.value})"
            )
        notes = ticket.verification_notes if notes is None else notes
        if approved:
            return replace(
                ticket,
                verification_status=VerificationStatus.VERIFIED,
                verification_notes=notes,
                verified_by=verifier_id,
                verified_at=now,
                status=TicketStatus.CLOSED,
                completion=CLOSED_COMPLETION,
                closed_at=stamp_closed_at(ticket, TicketStatus.CLOSED, now),
                updated_at=now,
            )
        return replace(
            ticket,
            verification_status=VerificationStatus.REJECTED,
            verification_notes=notes,
            verified_by=verifier_id,
            verified_at=now,
            status=TicketStatus.IN_PROGRESS,
            completion=REJECTED_COMPLETION,
            updated_at=now,
        )

    @classmethod
    def skip(cls, ticket: Ticket, *, now: datetime) -> Ticket:
        return replace(
            ticket,
            verification_status=VerificationStatus.NOT_REQUIRED,
            status=TicketStatus.CLOSED,
            completion=CLOSED_COMPLETION,
            closed_at=stamp_closed_at(ticket, TicketStatus.CLOSED, now),
            updated_at=now,
        )

    @classmethod
    def setup(
        cls,
        ticket: Ticket,
        status: VerificationStatus | str,
        notes: str,
        *,
        now: datetime,
    ) -> Ticket:
        try:
            target = VerificationStatus(status)
        except ValueError as exc:
            raise TicketValidationError(f"Invalid verification status: {status!r}") from exc
        if target not in SETUP_TARGETS:
            raise TicketValidationError(
                f"Verification can only be set up as pending or not_required, got {target.value}"
            )
        if ticket.status not in VERIFIABLE_STATUSES:
            raise InvalidTicketStateError(
                f"Ticket must be resolved or in progress to setup verification (status: {ticket.status.value})"
            )
        if ticket.verification_status is not VerificationStatus.NOT_REQUIRED:
            raise InvalidTicketStateError("Verification is already set up for this ticket")
        return replace(
            ticket,
            verification_status=target,
            verification_notes=notes,
            updated_at=now,
        )

    @classmethod
    def reset(cls, ticket: Ticket, requested_by: int, *, now: datetime) -> Ticket:
        if ticket.status is TicketStatus.CLOSED:
            raise InvalidTicketStateError("Cannot reset verification for closed tickets")
        if ticket.verification_status is VerificationStatus.NOT_REQUIRED:
            raise InvalidTicketStateError("Verification has not been set up for this ticket")
        return replace(
            ticket,
            verification_status=VerificationStatus.PENDING,
            verification_notes=RESET_NOTE_TEMPLATE.format(user_id=requested_by),
            verified_by=None,
            verified_at=None,
            updated_at=now,
        )
