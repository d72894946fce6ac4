from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from queueline.lines.engine import QueueEngine
from queueline.lines.fanout import EventFanout
from queueline.lines.identity import Identity, Role
from queueline.lines.memory import MemoryTicketStore
from queueline.lines.queries import LineQueryService
from queueline.metrics import MetricsRegistry

FIXED_START = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Clock that advances one second per reading so creation order is strict."""

    def __init__(self, start: datetime = FIXED_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def registry() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def store() -> MemoryTicketStore:
    return MemoryTicketStore()


@pytest.fixture
def fanout(registry: MetricsRegistry) -> EventFanout:
    return EventFanout(registry)


@pytest.fixture
def engine(store: MemoryTicketStore, fanout: EventFanout, registry: MetricsRegistry) -> QueueEngine:
    return QueueEngine(
        store,
        fanout,
        time_slots=("09:00 AM", "09:30 AM", "10:00 AM"),
        retry_backoff=0.0,
        clock=SteppingClock(),
        registry=registry,
    )


@pytest.fixture
def queries(store: MemoryTicketStore, engine: QueueEngine) -> LineQueryService:
    return LineQueryService(store, today=engine.today)


@pytest.fixture
def staff() -> Identity:
    return Identity(user_id="staff-1", role=Role.STAFF)


@pytest.fixture
def alice() -> Identity:
    return Identity(user_id="alice", role=Role.USER)


@pytest.fixture
def bob() -> Identity:
    return Identity(user_id="bob", role=Role.USER)
