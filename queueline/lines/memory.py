"""Process-local ticket store used for development and tests."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date
from threading import Lock
from typing import AsyncIterator, Sequence

from .errors import ConcurrentWriteError
from .models import LineKey, LineState, Ticket

logger = logging.getLogger(__name__)


class MemoryLineTransaction:
    """Staged view of one line; changes are applied by the store on exit."""

    def __init__(self, store: "MemoryTicketStore", key: LineKey) -> None:
        self._store = store
        self._key = key
        self._staged: dict[str, Ticket] = {}
        self._added: list[str] = []
        self._line: LineState | None = None

    @property
    def key(self) -> LineKey:
        return self._key

    async def line_state(self) -> LineState:
        return self._store._read_line(self._key)

    async def active_tickets(self) -> Sequence[Ticket]:
        active = [ticket for ticket in self._view() if ticket.is_active]
        active.sort(key=lambda ticket: ticket.position)
        return active

    async def find_ticket(self, ticket_id: str) -> Ticket | None:
        if ticket_id in self._staged:
            return replace(self._staged[ticket_id])
        return self._store._read_ticket(ticket_id)

    async def add_ticket(self, ticket: Ticket) -> None:
        self._staged[ticket.id] = replace(ticket)
        self._added.append(ticket.id)

    async def save_ticket(self, ticket: Ticket) -> None:
        self._staged[ticket.id] = replace(ticket)

    async def compact_after(self, position: int) -> int:
        shifted = 0
        for ticket in self._view():
            if ticket.is_active and ticket.position > position:
                self._staged[ticket.id] = replace(ticket, position=ticket.position - 1)
                shifted += 1
        return shifted

    async def commit_line(self, state: LineState) -> None:
        self._line = replace(state)

    def _view(self) -> list[Ticket]:
        tickets = {ticket.id: ticket for ticket in self._store._read_line_tickets(self._key)}
        tickets.update(self._staged)
        return list(tickets.values())


class MemoryTicketStore:
    """Ticket store keeping every line in process memory."""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._lines: dict[LineKey, LineState] = {}
        self._lock = Lock()

    async def ensure_schema(self) -> None:
        return None

    @asynccontextmanager
    async def transaction(self, key: LineKey) -> AsyncIterator[MemoryLineTransaction]:
        transaction = MemoryLineTransaction(self, key)
        yield transaction
        self._apply(transaction)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self._read_ticket(ticket_id)

    async def list_line(self, key: LineKey) -> Sequence[Ticket]:
        return sorted(self._read_line_tickets(key), key=_creation_order)

    async def list_day(self, line_date: date) -> Sequence[Ticket]:
        with self._lock:
            tickets = [replace(ticket) for ticket in self._tickets.values() if ticket.line_date == line_date]
        return sorted(tickets, key=_creation_order)

    async def list_owner(self, owner_id: str) -> Sequence[Ticket]:
        with self._lock:
            tickets = [replace(ticket) for ticket in self._tickets.values() if ticket.owner_id == owner_id]
        return sorted(tickets, key=_creation_order, reverse=True)

    async def get_line_state(self, key: LineKey) -> LineState:
        return self._read_line(key)

    async def close(self) -> None:
        return None

    def _read_ticket(self, ticket_id: str) -> Ticket | None:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            return replace(ticket) if ticket is not None else None

    def _read_line(self, key: LineKey) -> LineState:
        with self._lock:
            state = self._lines.get(key)
            return replace(state) if state is not None else LineState(key=key)

    def _read_line_tickets(self, key: LineKey) -> list[Ticket]:
        with self._lock:
            return [replace(ticket) for ticket in self._tickets.values() if ticket.key == key]

    def _apply(self, transaction: MemoryLineTransaction) -> None:
        key = transaction.key
        with self._lock:
            current = self._lines.get(key) or LineState(key=key)
            pending = transaction._line
            for ticket_id in transaction._added:
                if ticket_id in self._tickets:
                    raise ConcurrentWriteError(f"Ticket {ticket_id} already exists")
            if pending is not None:
                if pending.version != current.version:
                    raise ConcurrentWriteError(
                        f"Line {key} moved from version {pending.version} to {current.version}"
                    )
                self._lines[key] = replace(pending, version=current.version + 1)
            elif transaction._staged:
                raise RuntimeError(f"Ticket changes on line {key} staged without committing the line")
            self._tickets.update(transaction._staged)
        if transaction._staged:
            logger.debug("Applied %d ticket change(s) to line %s", len(transaction._staged), key)


def _creation_order(ticket: Ticket) -> tuple:
    return (ticket.created_at, ticket.queue_number)
