"""Ticket ordering engine: booking, advancing and completing line tickets.

Every mutation of a line runs inside that line's exclusive region (one
``asyncio.Lock`` per ``(service, date)``) and inside a single store
transaction. The store additionally checks the line's version on commit, so
a writer in another process surfaces as :class:`ConcurrentWriteError`; the
engine retries those a bounded number of times before giving up with
:class:`TransientQueueError`.

Events are published after the commit and before the lock is released,
which keeps per-line delivery in the same order the mutations were applied.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import date, datetime, timezone
from threading import Lock
from typing import Awaitable, Callable, Generic, Sequence, TypeVar
from zoneinfo import ZoneInfo

from opentelemetry import trace

from queueline.core.config import Settings
from queueline.metrics import MetricsRegistry, metrics_registry
from queueline.metrics.base import track_duration
from queueline.metrics.definitions import (
    ACTIVE_TICKETS,
    ADVANCES_TOTAL,
    BOOKINGS_TOTAL,
    COMPLETIONS_TOTAL,
    MUTATION_DURATION_SECONDS,
    MUTATION_FAILURES_TOTAL,
    MUTATION_RETRIES_TOTAL,
)

from .errors import (
    AlreadyCompletedError,
    ConcurrentWriteError,
    EmptyQueueError,
    ForbiddenError,
    IdentityRequiredError,
    InvalidServiceError,
    InvalidTimeSlotError,
    TicketNotFoundError,
    TransientQueueError,
)
from .fanout import ALL_LINES_CHANNEL, EventFanout, Subscriber
from .identity import Identity
from .models import BookingReceipt, LineEvent, LineKey, ServiceType, Ticket
from .state import TicketStateMachine, TicketStatus
from .store import LineTransaction, TicketStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar("T")


@dataclass
class _Outcome(Generic[T]):
    result: T
    event: LineEvent
    active: int


class PartitionLocks:
    """Hand out one ``asyncio.Lock`` per line, dropped once nobody holds it."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[LineKey, asyncio.Lock] = weakref.WeakValueDictionary()
        self._guard = Lock()

    def get(self, key: LineKey) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


def parse_service_type(value: ServiceType | str) -> ServiceType:
    if isinstance(value, ServiceType):
        return value
    candidate = (value or "").strip()
    for service in ServiceType:
        if candidate.lower() in (service.value.lower(), service.name.lower()):
            return service
    raise InvalidServiceError(f"Unknown service type: {value!r}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueEngine:
    """Enforce the booking / advance / completion rules for every line."""

    def __init__(
        self,
        store: TicketStore,
        fanout: EventFanout,
        *,
        line_timezone: str = "UTC",
        time_slots: Sequence[str] = (),
        max_attempts: int = 3,
        retry_backoff: float = 0.05,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        registry: MetricsRegistry | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._fanout = fanout
        self._zone = ZoneInfo(line_timezone)
        self._time_slots = tuple(time_slots)
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._clock = clock
        self._id_factory = id_factory
        self._locks = PartitionLocks()

        registry = registry or metrics_registry
        self._counters = {
            "book": registry.counter(BOOKINGS_TOTAL, label_names=("service_type",)),
            "advance": registry.counter(ADVANCES_TOTAL, label_names=("service_type",)),
            "complete": registry.counter(COMPLETIONS_TOTAL, label_names=("service_type",)),
        }
        self._retries = registry.counter(MUTATION_RETRIES_TOTAL, label_names=("operation",))
        self._failures = registry.counter(MUTATION_FAILURES_TOTAL, label_names=("operation",))
        self._durations = registry.distribution(MUTATION_DURATION_SECONDS, label_names=("operation",))
        self._active_gauge = registry.gauge(ACTIVE_TICKETS, label_names=("service_type", "date"))

    @classmethod
    def from_settings(cls, store: TicketStore, fanout: EventFanout, settings: Settings) -> "QueueEngine":
        return cls(
            store,
            fanout,
            line_timezone=settings.line_timezone,
            time_slots=settings.time_slots,
            max_attempts=settings.mutation_max_attempts,
            retry_backoff=settings.mutation_retry_backoff,
        )

    @property
    def time_slots(self) -> tuple[str, ...]:
        return self._time_slots

    def today(self) -> date:
        """Current day in the line calendar."""

        return self._clock().astimezone(self._zone).date()

    def line_key(self, service_type: ServiceType | str, line_date: date | None = None) -> LineKey:
        return LineKey(parse_service_type(service_type), line_date or self.today())

    async def book(
        self,
        identity: Identity | None,
        service_type: ServiceType | str,
        time_slot: str,
        line_date: date | None = None,
    ) -> BookingReceipt:
        identity = self._require_identity(identity)
        key = self.line_key(service_type, line_date)
        slot = self._validate_time_slot(time_slot)

        async def work(tx: LineTransaction) -> _Outcome[Ticket]:
            state = await tx.line_state()
            active = await tx.active_tickets()
            ticket = Ticket(
                id=self._id_factory(),
                owner_id=identity.user_id,
                service_type=key.service_type,
                time_slot=slot,
                line_date=key.line_date,
                queue_number=state.issued + 1,
                position=len(active) + 1,
                status=TicketStateMachine.initial_state(),
                created_at=self._clock(),
            )
            await tx.add_ticket(ticket)
            state.issued = ticket.queue_number
            await tx.commit_line(state)
            return _Outcome(ticket, LineEvent("booked", key, [ticket]), len(active) + 1)

        ticket = await self._mutate("book", key, work)
        logger.info(
            "Booked ticket %s on %s: queue number %d, position %d",
            ticket.id,
            key,
            ticket.queue_number,
            ticket.position,
        )
        return BookingReceipt(
            ticket=ticket,
            message=f"Your booking is confirmed! Queue Number: #{ticket.queue_number}",
        )

    async def advance(
        self,
        identity: Identity | None,
        service_type: ServiceType | str,
        line_date: date | None = None,
    ) -> Ticket:
        self._require_staff(identity)
        key = self.line_key(service_type, line_date)

        async def work(tx: LineTransaction) -> _Outcome[Ticket]:
            state = await tx.line_state()
            active = await tx.active_tickets()
            pending = [ticket for ticket in active if ticket.status is TicketStatus.PENDING]
            if not pending:
                raise EmptyQueueError(f"No pending customers in line {key}")
            ticket = min(pending, key=lambda item: item.position)
            TicketStateMachine.assert_transition(ticket.status, TicketStatus.SERVING)
            ticket.status = TicketStatus.SERVING
            await tx.save_ticket(ticket)
            await tx.commit_line(state)
            return _Outcome(ticket, LineEvent("nowServing", key, [ticket]), len(active))

        ticket = await self._mutate("advance", key, work)
        logger.info("Now serving queue number %d on %s", ticket.queue_number, key)
        return ticket

    async def complete(self, identity: Identity | None, ticket_id: str) -> Ticket:
        self._require_staff(identity)
        located = await self._store.get_ticket(ticket_id)
        if located is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        key = located.key

        async def work(tx: LineTransaction) -> _Outcome[Ticket]:
            state = await tx.line_state()
            ticket = await tx.find_ticket(ticket_id)
            if ticket is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            if not ticket.is_active:
                raise AlreadyCompletedError(f"Ticket {ticket_id} is already {ticket.status.value}")
            TicketStateMachine.assert_transition(ticket.status, TicketStatus.COMPLETED)
            ticket.status = TicketStatus.COMPLETED
            ticket.completed_at = self._clock()
            await tx.save_ticket(ticket)
            shifted = await tx.compact_after(ticket.position)
            await tx.commit_line(state)
            remaining = len(await tx.active_tickets())
            logger.debug("Completing %s shifted %d ticket(s) on %s", ticket_id, shifted, key)
            return _Outcome(ticket, LineEvent("completed", key, [ticket]), remaining)

        ticket = await self._mutate("complete", key, work)
        logger.info("Completed queue number %d on %s", ticket.queue_number, key)
        return ticket

    async def subscribe(
        self,
        identity: Identity | None,
        subscriber: Subscriber,
        service_type: ServiceType | str,
        line_date: date | None = None,
    ) -> LineKey:
        """Register ``subscriber`` on one line and queue it the line's snapshot."""

        self._require_identity(identity)
        key = self.line_key(service_type, line_date)
        async with self._locks.get(key):
            await self._join(subscriber, key.channel, [key])
        return key

    async def subscribe_all(
        self,
        identity: Identity | None,
        subscriber: Subscriber,
        line_date: date | None = None,
    ) -> None:
        """Register ``subscriber`` on the all-lines channel used by staff dashboards."""

        self._require_staff(identity)
        day = line_date or self.today()
        keys = [LineKey(service, day) for service in ServiceType]
        async with AsyncExitStack() as stack:
            # Fixed enum order; mutations only ever hold a single line lock.
            for key in keys:
                await stack.enter_async_context(self._locks.get(key))
            await self._join(subscriber, ALL_LINES_CHANNEL, keys)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._fanout.unsubscribe(subscriber)

    async def _join(self, subscriber: Subscriber, channel: str, keys: Sequence[LineKey]) -> None:
        snapshots = []
        for key in keys:
            tickets = await self._store.list_line(key)
            active = sorted((ticket for ticket in tickets if ticket.is_active), key=lambda item: item.position)
            snapshots.append(LineEvent("snapshot", key, active))
        self._fanout.subscribe(subscriber, channel)
        for snapshot in snapshots:
            self._fanout.send(subscriber, snapshot)

    async def _mutate(
        self,
        operation: str,
        key: LineKey,
        work: Callable[[LineTransaction], Awaitable[_Outcome[T]]],
    ) -> T:
        with tracer.start_as_current_span(f"queue.{operation}") as span:
            span.set_attribute("queue.service_type", key.service_type.value)
            span.set_attribute("queue.date", key.line_date.isoformat())
            with track_duration(self._durations, labels={"operation": operation}):
                # The unit of work finishes even if the caller goes away.
                outcome = await asyncio.shield(self._run_locked(operation, key, work))
        self._counters[operation].inc(labels={"service_type": key.service_type.value})
        return outcome.result

    async def _run_locked(
        self,
        operation: str,
        key: LineKey,
        work: Callable[[LineTransaction], Awaitable[_Outcome[T]]],
    ) -> _Outcome[T]:
        async with self._locks.get(key):
            attempt = 1
            while True:
                try:
                    async with self._store.transaction(key) as tx:
                        outcome = await work(tx)
                except ConcurrentWriteError as exc:
                    if attempt >= self._max_attempts:
                        self._failures.inc(labels={"operation": operation})
                        logger.error("Giving up %s on %s after %d attempt(s): %s", operation, key, attempt, exc)
                        raise TransientQueueError(
                            f"Line {key} is busy, {operation} could not be applied; try again"
                        ) from exc
                    self._retries.inc(labels={"operation": operation})
                    delay = self._retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Concurrent write on %s during %s (attempt %d/%d), retrying in %.3fs",
                        key,
                        operation,
                        attempt,
                        self._max_attempts,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                self._fanout.publish(key, outcome.event)
                self._active_gauge.set(
                    outcome.active,
                    labels={"service_type": key.service_type.value, "date": key.line_date.isoformat()},
                )
                return outcome

    def _validate_time_slot(self, time_slot: str) -> str:
        slot = (time_slot or "").strip()
        if not slot:
            raise InvalidTimeSlotError("Time slot is required")
        if self._time_slots and slot not in self._time_slots:
            raise InvalidTimeSlotError(f"Unknown time slot: {slot!r}")
        return slot

    @staticmethod
    def _require_identity(identity: Identity | None) -> Identity:
        if identity is None or not identity.user_id:
            raise IdentityRequiredError("Authentication required")
        return identity

    @classmethod
    def _require_staff(cls, identity: Identity | None) -> Identity:
        identity = cls._require_identity(identity)
        if not identity.can_manage_queue:
            raise ForbiddenError("Staff access required")
        return identity

