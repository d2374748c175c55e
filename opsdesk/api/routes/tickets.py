from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from opsdesk.dependencies.auth import Caller
from opsdesk.dependencies.tickets import TicketServiceDep
from opsdesk.tickets.errors import (
    DependencyError,
    InvalidTicketStateError,
    TicketAuthorizationError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
    UnknownReferenceError,
)
from opsdesk.tickets.models import NewTicket, Ticket, TicketFilters
from opsdesk.tickets.state import TicketStatus, VerificationStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    priority: str | None = None
    asset_id: int | None = None
    is_internal: bool = True


class TicketUpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    type: str | None = None
    priority: str | None = None
    asset_id: int | None = None
    is_internal: bool | None = None

    def ensure_payload(self) -> None:
        if not self.model_fields_set:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class TicketStatusChangeRequest(BaseModel):
    status: str
    completion: int
    assigned_to: int | None = None


class TicketReassignRequest(BaseModel):
    assigned_to: int


class VerificationRequest(BaseModel):
    notes: str = ""


class VerificationDecisionRequest(BaseModel):
    approved: bool
    notes: str | None = None
    verifier_id: int | None = None


class VerificationSetupRequest(BaseModel):
    verification_status: str = VerificationStatus.PENDING.value
    notes: str = ""


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_num: str
    title: str
    description: str
    type: str
    priority: str
    status: TicketStatus
    completion: int
    created_by: int | None
    assigned_to: int | None
    asset_id: int | None
    is_internal: bool
    verification_status: VerificationStatus
    verification_notes: str
    verified_by: int | None
    verified_at: datetime | None
    created_at: datetime
    updated_at: datetime
    closed_at: datetime | None


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


@contextmanager
def _service_errors() -> Iterator[None]:
    """Map ticket service errors onto HTTP responses."""

    try:
        yield
    except TicketAuthorizationError as exc:
        raise HTTPException(
            status_code=403, detail={"message": str(exc), "reason": exc.reason.value}
        ) from exc
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidTicketStateError as exc:
        detail: str | dict[str, str] = str(exc)
        if exc.reason is not None:
            detail = {"message": str(exc), "reason": exc.reason.value}
        raise HTTPException(status_code=409, detail=detail) from exc
    except (TicketValidationError, UnknownReferenceError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DependencyError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except TicketServiceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    fields = NewTicket(
        title=payload.title,
        description=payload.description,
        type=payload.type,
        priority=payload.priority or "",
        asset_id=payload.asset_id,
        is_internal=payload.is_internal,
    )
    with _service_errors():
        ticket = await service.create_ticket(fields, caller)
    return _to_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    _: Caller,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    type_filter: str | None = Query(default=None, alias="type"),
    priority: str | None = None,
    assigned_to: int | None = None,
    created_by: int | None = None,
    limit: int = Query(default=0, ge=0),
    offset: int = Query(default=0, ge=0),
) -> list[TicketResponse]:
    filters = TicketFilters(
        status=status_filter,
        type=type_filter,
        priority=priority,
        assigned_to=assigned_to,
        created_by=created_by,
        limit=limit,
        offset=offset,
    )
    with _service_errors():
        tickets = await service.list_tickets(filters)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: int, service: TicketServiceDep, _: Caller) -> TicketResponse:
    with _service_errors():
        ticket = await service.get_ticket(ticket_id)
    return _to_response(ticket)


@router.put("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: int,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    payload.ensure_payload()
    with _service_errors():
        ticket = await service.update_details(
            ticket_id,
            caller,
            title=payload.title,
            description=payload.description,
            type=payload.type,
            priority=payload.priority,
            asset_id=payload.asset_id,
            is_internal=payload.is_internal,
        )
    return _to_response(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: int, service: TicketServiceDep, caller: Caller) -> None:
    with _service_errors():
        await service.delete_ticket(ticket_id, caller)


@router.put("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: int,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    with _service_errors():
        ticket = await service.set_status(
            ticket_id,
            caller,
            status=payload.status,
            completion=payload.completion,
            assigned_to=payload.assigned_to,
        )
    return _to_response(ticket)


@router.post("/{ticket_id}/reassign", response_model=TicketResponse)
async def reassign_ticket(
    ticket_id: int,
    payload: TicketReassignRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    with _service_errors():
        ticket = await service.reassign(ticket_id, caller, assigned_to=payload.assigned_to)
    return _to_response(ticket)


@router.post("/{ticket_id}/request-verification", response_model=TicketResponse)
async def request_verification(
    ticket_id: int,
    payload: VerificationRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    with _service_errors():
        ticket = await service.request_verification(ticket_id, caller, notes=payload.notes)
    return _to_response(ticket)


@router.post("/{ticket_id}/verify", response_model=TicketResponse)
async def verify_ticket(
    ticket_id: int,
    payload: VerificationDecisionRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    with _service_errors():
        ticket = await service.decide_verification(
            ticket_id,
            caller,
            approved=payload.approved,
            notes=payload.notes,
            verifier_id=payload.verifier_id,
        )
    return _to_response(ticket)


@router.post("/{ticket_id}/skip-verification", response_model=TicketResponse)
async def skip_verification(ticket_id: int, service: TicketServiceDep, caller: Caller) -> TicketResponse:
    with _service_errors():
        ticket = await service.skip_verification(ticket_id, caller)
    return _to_response(ticket)


@router.post("/{ticket_id}/setup-verification", response_model=TicketResponse)
async def setup_verification(
    ticket_id: int,
    payload: VerificationSetupRequest,
    service: TicketServiceDep,
    caller: Caller,
) -> TicketResponse:
    with _service_errors():
        ticket = await service.setup_verification(
            ticket_id,
            caller,
            status=payload.verification_status,
            notes=payload.notes,
        )
    return _to_response(ticket)


@router.post("/{ticket_id}/reset-verification", response_model=TicketResponse)
async def reset_verification(ticket_id: int, service: TicketServiceDep, caller: Caller) -> TicketResponse:
    with _service_errors():
        ticket = await service.reset_verification(ticket_id, caller)
    return _to_response(ticket)
