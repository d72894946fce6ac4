from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    PENDING = "pending"
    SERVING = "serving"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_active(self) -> bool:
        return self in (TicketStatus.PENDING, TicketStatus.SERVING)


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    Completing a pending ticket without advancing it first is allowed. No
    transition leaves ``completed`` or ``canceled``, and nothing returns to
    ``pending``.
    """

    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.PENDING: {TicketStatus.SERVING, TicketStatus.COMPLETED, TicketStatus.CANCELED},
        TicketStatus.SERVING: {TicketStatus.COMPLETED},
        TicketStatus.COMPLETED: set(),
        TicketStatus.CANCELED: set(),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise ValueError(f"Invalid ticket status transition: {current.value} -> {new.value}")
