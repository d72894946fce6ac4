from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from queueline.dependencies.auth import CurrentIdentity, StaffIdentity
from queueline.dependencies.queue import LineQueriesDep, QueueEngineDep
from queueline.lines.errors import (
    AccessError,
    AlreadyCompletedError,
    EmptyQueueError,
    ForbiddenError,
    QueueError,
    TicketNotFoundError,
    TransientQueueError,
    ValidationError,
)
from queueline.lines.models import LineSummary, ServiceType, Ticket
from queueline.lines.state import TicketStatus

router = APIRouter(prefix="/queue", tags=["queue"])


class BookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_type: str = Field(..., alias="serviceType", min_length=1)
    time_slot: str = Field(..., alias="timeSlot", min_length=1, max_length=50)


class AdvanceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_type: str = Field(..., alias="serviceType", min_length=1)
    line_date: date | None = Field(default=None, alias="date")


class CompleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(..., alias="ticketId", min_length=1)


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str = Field(alias="ticketId")
    owner_id: str = Field(alias="ownerId")
    service_type: ServiceType = Field(alias="serviceType")
    time_slot: str = Field(alias="timeSlot")
    line_date: date = Field(alias="date")
    queue_number: int = Field(alias="queueNumber")
    position: int
    status: TicketStatus
    created_at: datetime = Field(alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")


class BookingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_id: str = Field(alias="ticketId")
    queue_number: int = Field(alias="queueNumber")
    position: int
    message: str


class AdvanceResponse(BaseModel):
    message: str
    ticket: TicketResponse


class LineSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    service_type: ServiceType = Field(alias="serviceType")
    line_date: date = Field(alias="date")
    pending: int
    serving: int
    completed: int
    next_queue_number: int = Field(alias="nextQueueNumber")
    now_serving: list[int] = Field(alias="nowServing")


def to_ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_summary_response(summary: LineSummary) -> LineSummaryResponse:
    return LineSummaryResponse.model_validate(summary)


def http_error(exc: QueueError) -> HTTPException:
    """Translate a line error into the HTTP error surfaced to clients."""

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, (TicketNotFoundError, EmptyQueueError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, AlreadyCompletedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, AccessError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, TransientQueueError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": "1"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Queue operation failed")


@router.post("/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book(payload: BookRequest, engine: QueueEngineDep, identity: CurrentIdentity) -> BookingResponse:
    try:
        receipt = await engine.book(identity, payload.service_type, payload.time_slot)
    except QueueError as exc:
        raise http_error(exc) from exc
    return BookingResponse(
        ticket_id=receipt.ticket.id,
        queue_number=receipt.ticket.queue_number,
        position=receipt.ticket.position,
        message=receipt.message,
    )


@router.post("/next", response_model=AdvanceResponse)
async def call_next(payload: AdvanceRequest, engine: QueueEngineDep, identity: StaffIdentity) -> AdvanceResponse:
    try:
        ticket = await engine.advance(identity, payload.service_type, payload.line_date)
    except QueueError as exc:
        raise http_error(exc) from exc
    return AdvanceResponse(message="Next customer called", ticket=to_ticket_response(ticket))


@router.post("/complete")
async def complete(payload: CompleteRequest, engine: QueueEngineDep, identity: StaffIdentity) -> dict[str, str]:
    try:
        await engine.complete(identity, payload.ticket_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return {}


@router.get("/all", response_model=list[TicketResponse])
async def list_lines(
    queries: LineQueriesDep,
    identity: StaffIdentity,
    line_date: date | None = Query(default=None, alias="date"),
) -> list[TicketResponse]:
    try:
        tickets = await queries.list_lines(identity, line_date)
    except QueueError as exc:
        raise http_error(exc) from exc
    return [to_ticket_response(ticket) for ticket in tickets]


@router.get("/summary", response_model=list[LineSummaryResponse])
async def summarize_lines(
    queries: LineQueriesDep,
    identity: StaffIdentity,
    line_date: date | None = Query(default=None, alias="date"),
) -> list[LineSummaryResponse]:
    try:
        summaries = await queries.summarize(identity, line_date)
    except QueueError as exc:
        raise http_error(exc) from exc
    return [_to_summary_response(summary) for summary in summaries]


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, queries: LineQueriesDep, identity: CurrentIdentity) -> TicketResponse:
    try:
        ticket = await queries.get_ticket(identity, ticket_id)
    except QueueError as exc:
        raise http_error(exc) from exc
    return to_ticket_response(ticket)
