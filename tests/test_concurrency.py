from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date

import pytest

from queueline.lines.engine import QueueEngine
from queueline.lines.errors import TransientQueueError
from queueline.lines.fanout import EventFanout, Subscriber
from queueline.lines.memory import MemoryTicketStore
from queueline.lines.models import LineKey, LineState, ServiceType
from queueline.metrics import MetricsRegistry
from queueline.metrics.definitions import MUTATION_FAILURES_TOTAL, MUTATION_RETRIES_TOTAL

TODAY = date(2026, 10, 19)
BANK = LineKey(ServiceType.BANK, TODAY)


class RacingStore(MemoryTicketStore):
    """Memory store where another writer commits to the line right before us."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races
        self.attempts = 0

    @asynccontextmanager
    async def transaction(self, key: LineKey):
        self.attempts += 1
        async with super().transaction(key) as tx:
            yield tx
            if self.races > 0:
                self.races -= 1
                self._bump(key)

    def _bump(self, key: LineKey) -> None:
        with self._lock:
            current = self._lines.get(key) or LineState(key=key)
            self._lines[key] = replace(current, version=current.version + 1)


def _racing_engine(races: int, registry: MetricsRegistry) -> tuple[QueueEngine, RacingStore, EventFanout]:
    store = RacingStore(races)
    fanout = EventFanout(registry)
    engine = QueueEngine(store, fanout, max_attempts=3, retry_backoff=0.0, registry=registry)
    return engine, store, fanout


@pytest.mark.asyncio
async def test_concurrent_bookings_get_distinct_numbers(engine, store, alice):
    receipts = await asyncio.gather(*(engine.book(alice, "Bank", "09:00 AM", TODAY) for _ in range(25)))

    assert sorted(receipt.ticket.queue_number for receipt in receipts) == list(range(1, 26))
    assert sorted(receipt.ticket.position for receipt in receipts) == list(range(1, 26))
    stored = await store.list_line(BANK)
    assert len({ticket.id for ticket in stored}) == 25


@pytest.mark.asyncio
async def test_interleaved_mutations_keep_positions_contiguous(engine, store, staff, alice, bob):
    initial = [await engine.book(alice, "Bank", "09:00 AM", TODAY) for _ in range(10)]

    operations = []
    for index, receipt in enumerate(initial):
        if index % 2:
            operations.append(engine.complete(staff, receipt.ticket.id))
        else:
            operations.append(engine.book(bob, "Bank", "09:30 AM", TODAY))
    operations.extend(engine.advance(staff, "Bank", TODAY) for _ in range(3))
    await asyncio.gather(*operations)

    tickets = await store.list_line(BANK)
    active = sorted(ticket.position for ticket in tickets if ticket.is_active)
    assert active == list(range(1, len(active) + 1))
    assert len(active) == 10
    assert sorted(ticket.queue_number for ticket in tickets) == list(range(1, 16))


@pytest.mark.asyncio
async def test_conflicting_commit_is_retried(registry, alice):
    engine, store, _ = _racing_engine(races=2, registry=registry)

    receipt = await engine.book(alice, "Bank", "09:00 AM", TODAY)

    assert receipt.ticket.queue_number == 1
    assert store.attempts == 3
    assert len(await store.list_line(BANK)) == 1
    assert registry.snapshot()[MUTATION_RETRIES_TOTAL][("book",)]["value"] == 2.0


@pytest.mark.asyncio
async def test_persistent_conflict_surfaces_as_transient_error(registry, alice):
    engine, store, fanout = _racing_engine(races=10, registry=registry)
    subscriber = Subscriber("watcher")
    await engine.subscribe(alice, subscriber, "Bank", TODAY)
    await subscriber.get()

    with pytest.raises(TransientQueueError):
        await engine.book(alice, "Bank", "09:00 AM", TODAY)

    assert store.attempts == 3
    assert await store.list_line(BANK) == []
    assert subscriber._queue.empty()
    assert registry.snapshot()[MUTATION_FAILURES_TOTAL][("book",)]["value"] == 1.0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_the_booking(engine, store, alice):
    lock = engine._locks.get(BANK)
    await lock.acquire()
    task = asyncio.create_task(engine.book(alice, "Bank", "09:00 AM", TODAY))
    await asyncio.sleep(0)
    task.cancel()
    lock.release()

    with pytest.raises(asyncio.CancelledError):
        await task
    for _ in range(5):
        await asyncio.sleep(0)

    stored = await store.list_line(BANK)
    assert [ticket.queue_number for ticket in stored] == [1]
