"""Waiting-line domain: tickets, ordering engine, fanout and queries."""

from .engine import QueueEngine
from .errors import (
    AlreadyCompletedError,
    ConcurrentWriteError,
    EmptyQueueError,
    ForbiddenError,
    IdentityRequiredError,
    InvalidServiceError,
    InvalidTimeSlotError,
    QueueError,
    TicketNotFoundError,
    TransientQueueError,
    ValidationError,
)
from .fanout import ALL_LINES_CHANNEL, EventFanout, Subscriber
from .identity import Identity, Role
from .memory import MemoryTicketStore
from .models import BookingReceipt, LineEvent, LineKey, LineState, LineSummary, ServiceType, Ticket
from .queries import LineQueryService
from .state import TicketStateMachine, TicketStatus

__all__ = [
    "ALL_LINES_CHANNEL",
    "AlreadyCompletedError",
    "BookingReceipt",
    "ConcurrentWriteError",
    "EmptyQueueError",
    "EventFanout",
    "ForbiddenError",
    "Identity",
    "IdentityRequiredError",
    "InvalidServiceError",
    "InvalidTimeSlotError",
    "LineEvent",
    "LineKey",
    "LineQueryService",
    "LineState",
    "LineSummary",
    "MemoryTicketStore",
    "QueueEngine",
    "QueueError",
    "Role",
    "ServiceType",
    "Subscriber",
    "Ticket",
    "TicketNotFoundError",
    "TicketStateMachine",
    "TicketStatus",
    "TransientQueueError",
    "ValidationError",
]
