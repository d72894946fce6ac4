from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Sequence

import asyncpg

from .errors import ConcurrentWriteError
from .models import LineKey, LineState, ServiceType, Ticket
from .state import TicketStatus

logger = logging.getLogger(__name__)

_TICKET_COLUMNS = (
    "id, owner_id, service_type, time_slot, line_date, queue_number, position, status, created_at, completed_at"
)


class PostgresLineTransaction:
    """Line unit of work bound to one connection inside an open transaction."""

    _ENSURE_LINE_SQL = """
    INSERT INTO queue_lines (service_type, line_date, issued, version)
    VALUES ($1, $2, 0, 0)
    ON CONFLICT (service_type, line_date) DO NOTHING
    """

    _LOCK_LINE_SQL = """
    SELECT service_type, line_date, issued, version
    FROM queue_lines
    WHERE service_type = $1 AND line_date = $2
    FOR UPDATE
    """

    _ACTIVE_TICKETS_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE service_type = $1 AND line_date = $2 AND status IN ('pending', 'serving')
    ORDER BY position ASC
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE id = $1
    """

    _INSERT_TICKET_SQL = """
    INSERT INTO queue_tickets (id, owner_id, service_type, time_slot, line_date, queue_number, position, status, created_at, completed_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    """

    _UPDATE_TICKET_SQL = """
    UPDATE queue_tickets
    SET position = $2,
        status = $3,
        completed_at = $4
    WHERE id = $1
    """

    _COMPACT_SQL = """
    UPDATE queue_tickets
    SET position = position - 1
    WHERE service_type = $1
      AND line_date = $2
      AND status IN ('pending', 'serving')
      AND position > $3
    """

    _COMMIT_LINE_SQL = """
    UPDATE queue_lines
    SET issued = $3,
        version = version + 1
    WHERE service_type = $1 AND line_date = $2 AND version = $4
    """

    def __init__(self, connection: Any, key: LineKey) -> None:
        self._connection = connection
        self._key = key

    @property
    def _params(self) -> tuple[str, date]:
        return self._key.service_type.value, self._key.line_date

    async def line_state(self) -> LineState:
        await self._connection.execute(self._ENSURE_LINE_SQL, *self._params)
        row = await self._connection.fetchrow(self._LOCK_LINE_SQL, *self._params)
        if row is None:
            raise RuntimeError(f"Line {self._key} could not be locked")
        return LineState(key=self._key, issued=int(row["issued"]), version=int(row["version"]))

    async def active_tickets(self) -> Sequence[Ticket]:
        rows = await self._connection.fetch(self._ACTIVE_TICKETS_SQL, *self._params)
        return [_row_to_ticket(row) for row in rows]

    async def find_ticket(self, ticket_id: str) -> Ticket | None:
        row = await self._connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        return _row_to_ticket(row) if row is not None else None

    async def add_ticket(self, ticket: Ticket) -> None:
        await self._connection.execute(
            self._INSERT_TICKET_SQL,
            ticket.id,
            ticket.owner_id,
            ticket.service_type.value,
            ticket.time_slot,
            ticket.line_date,
            ticket.queue_number,
            ticket.position,
            ticket.status.value,
            ticket.created_at,
            ticket.completed_at,
        )

    async def save_ticket(self, ticket: Ticket) -> None:
        await self._connection.execute(
            self._UPDATE_TICKET_SQL,
            ticket.id,
            ticket.position,
            ticket.status.value,
            ticket.completed_at,
        )

    async def compact_after(self, position: int) -> int:
        result = await self._connection.execute(self._COMPACT_SQL, *self._params, position)
        return _affected_rows(result)

    async def commit_line(self, state: LineState) -> None:
        result = await self._connection.execute(self._COMMIT_LINE_SQL, *self._params, state.issued, state.version)
        if _affected_rows(result) != 1:
            raise ConcurrentWriteError(f"Line {self._key} changed since version {state.version}")


class PostgresTicketStore:
    """Ticket store backed by PostgreSQL through an asyncpg pool."""

    _CREATE_LINES_SQL = """
    CREATE TABLE IF NOT EXISTS queue_lines (
        service_type TEXT NOT NULL,
        line_date DATE NOT NULL,
        issued INTEGER NOT NULL DEFAULT 0,
        version BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (service_type, line_date)
    )
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS queue_tickets (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        service_type TEXT NOT NULL,
        time_slot TEXT NOT NULL,
        line_date DATE NOT NULL,
        queue_number INTEGER NOT NULL,
        position INTEGER NOT NULL,
        status TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        completed_at TIMESTAMPTZ NULL,
        UNIQUE (service_type, line_date, queue_number),
        FOREIGN KEY (service_type, line_date) REFERENCES queue_lines (service_type, line_date)
    )
    """

    _CREATE_OWNER_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS queue_tickets_owner_idx ON queue_tickets (owner_id, created_at DESC)
    """

    _CREATE_DAY_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS queue_tickets_day_idx ON queue_tickets (line_date, created_at ASC)
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE id = $1
    """

    _LIST_LINE_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE service_type = $1 AND line_date = $2
    ORDER BY created_at ASC, queue_number ASC
    """

    _LIST_DAY_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE line_date = $1
    ORDER BY created_at ASC, queue_number ASC
    """

    _LIST_OWNER_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM queue_tickets
    WHERE owner_id = $1
    ORDER BY created_at DESC, queue_number DESC
    """

    _SELECT_LINE_SQL = """
    SELECT service_type, line_date, issued, version
    FROM queue_lines
    WHERE service_type = $1 AND line_date = $2
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_LINES_SQL)
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_OWNER_INDEX_SQL)
            await connection.execute(self._CREATE_DAY_INDEX_SQL)

    @asynccontextmanager
    async def transaction(self, key: LineKey) -> AsyncIterator[PostgresLineTransaction]:
        try:
            async with self._pool.acquire() as connection:
                async with connection.transaction():
                    yield PostgresLineTransaction(connection, key)
        except (asyncpg.exceptions.SerializationError, asyncpg.exceptions.DeadlockDetectedError) as exc:
            logger.warning("Transaction on line %s aborted by the database: %s", key, exc)
            raise ConcurrentWriteError(str(exc)) from exc
        except asyncpg.exceptions.UniqueViolationError as exc:
            raise ConcurrentWriteError(str(exc)) from exc

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        return _row_to_ticket(row) if row is not None else None

    async def list_line(self, key: LineKey) -> Sequence[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_LINE_SQL, key.service_type.value, key.line_date)
        return [_row_to_ticket(row) for row in rows]

    async def list_day(self, line_date: date) -> Sequence[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_DAY_SQL, line_date)
        return [_row_to_ticket(row) for row in rows]

    async def list_owner(self, owner_id: str) -> Sequence[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_OWNER_SQL, owner_id)
        return [_row_to_ticket(row) for row in rows]

    async def get_line_state(self, key: LineKey) -> LineState:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_LINE_SQL, key.service_type.value, key.line_date)
        if row is None:
            return LineState(key=key)
        return LineState(key=key, issued=int(row["issued"]), version=int(row["version"]))

    async def close(self) -> None:
        return None


def _affected_rows(result: Any) -> int:
    if isinstance(result, str):
        tail = result.strip().rsplit(" ", 1)[-1]
        return int(tail) if tail.isdigit() else 0
    return int(result or 0)


def _row_to_ticket(row: Any) -> Ticket:
    completed_at = row["completed_at"]
    return Ticket(
        id=str(row["id"]),
        owner_id=str(row["owner_id"]),
        service_type=ServiceType(str(row["service_type"])),
        time_slot=str(row["time_slot"]),
        line_date=row["line_date"],
        queue_number=int(row["queue_number"]),
        position=int(row["position"]),
        status=TicketStatus(str(row["status"])),
        created_at=_ensure_datetime(row["created_at"]),
        completed_at=_ensure_datetime(completed_at) if completed_at is not None else None,
    )


def _ensure_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
