from __future__ import annotations

from datetime import date
from typing import Callable

from .errors import ForbiddenError, IdentityRequiredError, TicketNotFoundError
from .identity import Identity
from .models import LineKey, LineSummary, ServiceType, Ticket
from .state import TicketStatus
from .store import TicketStore

_SERVICE_ORDER = {service: index for index, service in enumerate(ServiceType)}


class LineQueryService:
    """Read-only views over the ticket store.

    Reads never wait on the engine's line locks; they see every write that
    was committed before the read started.
    """

    def __init__(self, store: TicketStore, *, today: Callable[[], date]) -> None:
        self._store = store
        self._today = today

    async def list_lines(self, identity: Identity | None, line_date: date | None = None) -> list[Ticket]:
        """All tickets of a day grouped by service type, creation order within a group."""

        _require_staff(identity)
        tickets = await self._store.list_day(line_date or self._today())
        # sorted() is stable, so the store's creation order survives within each group.
        return sorted(tickets, key=lambda ticket: _SERVICE_ORDER[ticket.service_type])

    async def list_user_tickets(self, identity: Identity | None) -> list[Ticket]:
        identity = _require_identity(identity)
        return list(await self._store.list_owner(identity.user_id))

    async def get_ticket(self, identity: Identity | None, ticket_id: str) -> Ticket:
        identity = _require_identity(identity)
        ticket = await self._store.get_ticket(ticket_id)
        # Other users' tickets are reported as missing rather than forbidden.
        if ticket is None or (ticket.owner_id != identity.user_id and not identity.can_manage_queue):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def summarize(self, identity: Identity | None, line_date: date | None = None) -> list[LineSummary]:
        _require_staff(identity)
        day = line_date or self._today()
        tickets = await self._store.list_day(day)
        summaries = {service: LineSummary(service_type=service, line_date=day) for service in ServiceType}
        for ticket in tickets:
            summary = summaries[ticket.service_type]
            if ticket.status is TicketStatus.PENDING:
                summary.pending += 1
            elif ticket.status is TicketStatus.SERVING:
                summary.serving += 1
                summary.now_serving.append(ticket.queue_number)
            elif ticket.status is TicketStatus.COMPLETED:
                summary.completed += 1
        for service, summary in summaries.items():
            state = await self._store.get_line_state(LineKey(service, day))
            summary.next_queue_number = state.issued + 1
            summary.now_serving.sort()
        return list(summaries.values())


def _require_identity(identity: Identity | None) -> Identity:
    if identity is None or not identity.user_id:
        raise IdentityRequiredError("Authentication required")
    return identity


def _require_staff(identity: Identity | None) -> Identity:
    identity = _require_identity(identity)
    if not identity.can_manage_queue:
        raise ForbiddenError("Staff access required")
    return identity
