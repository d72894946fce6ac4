from __future__ import annotations

from fastapi import APIRouter

from queueline.dependencies.auth import CurrentIdentity
from queueline.dependencies.queue import LineQueriesDep
from queueline.lines.errors import QueueError

from .queue import TicketResponse, http_error, to_ticket_response

router = APIRouter(prefix="/user", tags=["user"])


@router.get("/bookings", response_model=list[TicketResponse])
async def list_bookings(queries: LineQueriesDep, identity: CurrentIdentity) -> list[TicketResponse]:
    try:
        tickets = await queries.list_user_tickets(identity)
    except QueueError as exc:
        raise http_error(exc) from exc
    return [to_ticket_response(ticket) for ticket in tickets]
