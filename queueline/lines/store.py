"""Storage contract used by the line engine and query service."""

from __future__ import annotations

from datetime import date
from typing import AsyncContextManager, Protocol, Sequence

from .models import LineKey, LineState, Ticket


class LineTransaction(Protocol):
    """Unit of work scoped to a single line.

    Every read and write goes through the same transaction. Nothing becomes
    visible to other readers until the surrounding context exits cleanly;
    any exception discards the whole unit.
    """

    async def line_state(self) -> LineState:
        ...

    async def active_tickets(self) -> Sequence[Ticket]:
        """Return the active tickets of the line ordered by position."""
        ...

    async def find_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def add_ticket(self, ticket: Ticket) -> None:
        ...

    async def save_ticket(self, ticket: Ticket) -> None:
        ...

    async def compact_after(self, position: int) -> int:
        """Shift every active ticket behind ``position`` forward by one."""
        ...

    async def commit_line(self, state: LineState) -> None:
        """Persist ``state`` if the line is still at ``state.version``.

        Raises :class:`~queueline.lines.errors.ConcurrentWriteError` when
        another writer committed the line first.
        """
        ...


class TicketStore(Protocol):
    async def ensure_schema(self) -> None:
        ...

    def transaction(self, key: LineKey) -> AsyncContextManager[LineTransaction]:
        ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        ...

    async def list_line(self, key: LineKey) -> Sequence[Ticket]:
        """Return every ticket of the line in booking order."""
        ...

    async def list_day(self, line_date: date) -> Sequence[Ticket]:
        """Return every ticket booked for ``line_date`` in creation order."""
        ...

    async def list_owner(self, owner_id: str) -> Sequence[Ticket]:
        """Return the tickets of ``owner_id``, newest first."""
        ...

    async def get_line_state(self, key: LineKey) -> LineState:
        ...

    async def close(self) -> None:
        ...
