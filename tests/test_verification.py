from datetime import timedelta

import pytest

from conftest import BASE_TIME, make_ticket
from opsdesk.tickets.errors import InvalidTicketStateError, TicketValidationError
from opsdesk.tickets.state import TicketStatus, VerificationStatus
from opsdesk.tickets.verification import (
    CLOSED_COMPLETION,
    PENDING_REVIEW_COMPLETION,
    REJECTED_COMPLETION,
    VerificationStateMachine,
)

NOW = BASE_TIME + timedelta(hours=2)


@pytest.mark.parametrize("status", [TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED])
def test_request_moves_ticket_to_pending_review(status):
    ticket = make_ticket(status=status, completion=40)

    updated = VerificationStateMachine.request(ticket, "done", now=NOW)

    assert updated.status is TicketStatus.RESOLVED
    assert updated.completion == PENDING_REVIEW_COMPLETION
    assert updated.verification_status is VerificationStatus.PENDING
    assert updated.verification_notes == "done"


@pytest.mark.parametrize("status", [TicketStatus.OPEN, TicketStatus.RECEIVED, TicketStatus.CLOSED])
def test_request_rejects_other_statuses(status):
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.request(make_ticket(status=status), "done", now=NOW)


@pytest.mark.parametrize("completion", [0, 40, 90])
def test_approval_closes_ticket(completion):
    ticket = make_ticket(
        status=TicketStatus.RESOLVED,
        completion=completion,
        verification_status=VerificationStatus.PENDING,
        verification_notes="done",
    )

    updated = VerificationStateMachine.decide(ticket, 20, True, "looks good", now=NOW)

    assert updated.status is TicketStatus.CLOSED
    assert updated.completion == CLOSED_COMPLETION
    assert updated.verification_status is VerificationStatus.VERIFIED
    assert updated.verified_by == 20
    assert updated.verified_at == NOW
    assert updated.closed_at == NOW
    assert updated.verification_notes == "looks good"


@pytest.mark.parametrize("completion", [10, 90])
def test_rejection_sends_ticket_back_to_work(completion):
    ticket = make_ticket(
        status=TicketStatus.RESOLVED,
        completion=completion,
        verification_status=VerificationStatus.PENDING,
    )

    updated = VerificationStateMachine.decide(ticket, 20, False, "still broken", now=NOW)

    assert updated.status is TicketStatus.IN_PROGRESS
    assert updated.completion == REJECTED_COMPLETION
    assert updated.verification_status is VerificationStatus.REJECTED
    assert updated.verified_by == 20
    assert updated.closed_at is None


def test_decision_without_notes_keeps_existing_notes():
    ticket = make_ticket(
        status=TicketStatus.RESOLVED,
        verification_status=VerificationStatus.PENDING,
        verification_notes="done",
    )
    updated = VerificationStateMachine.decide(ticket, 20, True, None, now=NOW)
    assert updated.verification_notes == "done"


@pytest.mark.parametrize(
    "verification_status",
    [VerificationStatus.NOT_REQUIRED, VerificationStatus.VERIFIED, VerificationStatus.REJECTED],
)
def test_decide_requires_pending(verification_status):
    ticket = make_ticket(status=TicketStatus.RESOLVED, verification_status=verification_status)
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.decide(ticket, 20, True, None, now=NOW)


def test_skip_closes_without_review():
    ticket = make_ticket(status=TicketStatus.OPEN, verification_status=VerificationStatus.PENDING)

    updated = VerificationStateMachine.skip(ticket, now=NOW)

    assert updated.status is TicketStatus.CLOSED
    assert updated.completion == CLOSED_COMPLETION
    assert updated.verification_status is VerificationStatus.NOT_REQUIRED
    assert updated.closed_at == NOW


def test_skip_keeps_first_closed_at():
    ticket = make_ticket(status=TicketStatus.CLOSED, closed_at=BASE_TIME)
    assert VerificationStateMachine.skip(ticket, now=NOW).closed_at == BASE_TIME


def test_setup_pending_keeps_status_and_completion():
    ticket = make_ticket(status=TicketStatus.IN_PROGRESS, completion=70)

    updated = VerificationStateMachine.setup(ticket, "pending", "please check", now=NOW)

    assert updated.verification_status is VerificationStatus.PENDING
    assert updated.verification_notes == "please check"
    assert updated.status is TicketStatus.IN_PROGRESS
    assert updated.completion == 70


def test_setup_rejects_terminal_targets():
    ticket = make_ticket(status=TicketStatus.RESOLVED)
    with pytest.raises(TicketValidationError):
        VerificationStateMachine.setup(ticket, "verified", "", now=NOW)
    with pytest.raises(TicketValidationError):
        VerificationStateMachine.setup(ticket, "unknown", "", now=NOW)


def test_setup_requires_verification_not_yet_configured():
    ticket = make_ticket(status=TicketStatus.RESOLVED, verification_status=VerificationStatus.PENDING)
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.setup(ticket, "pending", "", now=NOW)


def test_setup_requires_workable_status():
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.setup(make_ticket(status=TicketStatus.OPEN), "pending", "", now=NOW)


@pytest.mark.parametrize("verification_status", [VerificationStatus.VERIFIED, VerificationStatus.REJECTED])
def test_reset_reopens_review(verification_status):
    ticket = make_ticket(
        status=TicketStatus.IN_PROGRESS,
        verification_status=verification_status,
        verified_by=20,
        verified_at=BASE_TIME,
    )

    updated = VerificationStateMachine.reset(ticket, 10, now=NOW)

    assert updated.verification_status is VerificationStatus.PENDING
    assert updated.verified_by is None
    assert updated.verified_at is None
    assert updated.verification_notes == "Verification reset by user 10"


def test_reset_rejects_closed_tickets():
    ticket = make_ticket(status=TicketStatus.CLOSED, verification_status=VerificationStatus.VERIFIED)
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.reset(ticket, 10, now=NOW)


def test_reset_requires_configured_verification():
    with pytest.raises(InvalidTicketStateError):
        VerificationStateMachine.reset(make_ticket(status=TicketStatus.RESOLVED), 10, now=NOW)


def test_setup_and_request_paths_converge_on_approval():
    ticket = make_ticket(status=TicketStatus.RESOLVED, completion=60)

    via_setup = VerificationStateMachine.setup(ticket, "pending", "notes", now=NOW)
    via_request = VerificationStateMachine.request(ticket, "notes", now=NOW)
    assert via_setup.completion == 60
    assert via_request.completion == PENDING_REVIEW_COMPLETION

    approved_setup = VerificationStateMachine.decide(via_setup, 20, True, None, now=NOW)
    approved_request = VerificationStateMachine.decide(via_request, 20, True, None, now=NOW)
    assert approved_setup == approved_request
