from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Sequence

from .state import TicketStatus


class ServiceType(str, Enum):
    """Line categories a ticket can be booked into."""

    HOSPITAL = "Hospital"
    BANK = "Bank"
    GOVERNMENT_OFFICE = "Government Office"
    POST_OFFICE = "Post Office"
    DMV = "DMV"


@dataclass(frozen=True, slots=True)
class LineKey:
    """Partition key of a waiting line: one service type on one day."""

    service_type: ServiceType
    line_date: date

    @property
    def channel(self) -> str:
        return f"line:{self.service_type.value}:{self.line_date.isoformat()}"

    def __str__(self) -> str:
        return f"{self.service_type.value}@{self.line_date.isoformat()}"


@dataclass(slots=True)
class LineState:
    """Bookkeeping row for a line.

    ``issued`` is the last queue number handed out and ``version`` counts
    committed mutations; stores compare it on commit to detect writers
    outside this process.
    """

    key: LineKey
    issued: int = 0
    version: int = 0


@dataclass(slots=True)
class Ticket:
    """A booked place in a line."""

    id: str
    owner_id: str
    service_type: ServiceType
    time_slot: str
    line_date: date
    queue_number: int
    position: int
    status: TicketStatus
    created_at: datetime
    completed_at: datetime | None = None

    @property
    def key(self) -> LineKey:
        return LineKey(self.service_type, self.line_date)

    @property
    def is_active(self) -> bool:
        return self.status.is_active


@dataclass(slots=True)
class BookingReceipt:
    """Result of a successful booking."""

    ticket: Ticket
    message: str


@dataclass(slots=True)
class LineSummary:
    """Per-line counters shown on the staff dashboard."""

    service_type: ServiceType
    line_date: date
    pending: int = 0
    serving: int = 0
    completed: int = 0
    next_queue_number: int = 1
    now_serving: list[int] = field(default_factory=list)


@dataclass(slots=True)
class LineEvent:
    """Transition notice delivered to line subscribers."""

    event: str
    key: LineKey
    tickets: Sequence[Ticket]

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.event,
            "serviceType": self.key.service_type.value,
            "date": self.key.line_date.isoformat(),
        }
        if self.event == "snapshot":
            payload["tickets"] = [
                {
                    "ticketId": ticket.id,
                    "queueNumber": ticket.queue_number,
                    "position": ticket.position,
                    "status": ticket.status.value,
                }
                for ticket in self.tickets
            ]
            return payload

        ticket = self.tickets[0]
        payload.update(
            {
                "ticketId": ticket.id,
                "queueNumber": ticket.queue_number,
                "status": ticket.status.value,
                "position": ticket.position,
            }
        )
        return payload
