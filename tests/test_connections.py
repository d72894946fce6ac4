import inspect
from collections.abc import Awaitable
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from queueline.main import create_app
from queueline.services.postgres import PostgresPool


def _pool_mock(connection_mock):
    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()
    return pool_mock


@pytest.mark.asyncio
async def test_postgres_pool_connection_check(monkeypatch):
    connection_mock = AsyncMock()
    pool_mock = _pool_mock(connection_mock)
    created: list[dict] = []

    async def create_pool(**kwargs):
        created.append(kwargs)
        return pool_mock

    monkeypatch.setattr("queueline.services.postgres.asyncpg.create_pool", create_pool)

    postgres = PostgresPool("postgresql://test", min_size=2, max_size=4)
    assert await postgres.test_connection() is True
    assert await postgres.get_pool() is pool_mock
    assert created == [{"dsn": "postgresql://test", "min_size": 2, "max_size": 4}]
    connection_mock.execute.assert_awaited_with("SELECT 1")
    await postgres.close()
    pool_mock.close.assert_awaited()


def test_postgres_sync_helper(monkeypatch):
    async def fake_test(self) -> bool:
        return True

    captured: dict[str, object] = {}

    def wait_for_stub(coro: Awaitable, *, timeout: float):
        captured["coro"] = coro
        captured["timeout"] = timeout
        coro.close()
        return "wait-result"

    run_calls: list[object] = []

    def run_stub(arg: object):
        run_calls.append(arg)
        return True

    monkeypatch.setattr(PostgresPool, "test_connection", fake_test)
    monkeypatch.setattr("queueline.services.postgres.asyncio.wait_for", wait_for_stub)
    monkeypatch.setattr("queueline.services.postgres.asyncio.run", run_stub)

    postgres = PostgresPool("postgresql://test")

    assert postgres.test_connection_sync(timeout=0.1) is True
    assert inspect.iscoroutine(captured.get("coro"))
    assert captured["timeout"] == 0.1
    assert run_calls == ["wait-result"]


def test_ping_reports_memory_store():
    with TestClient(create_app()) as client:
        response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store": "memory"}


def test_ping_checks_postgres_when_configured():
    app = create_app()
    postgres = MagicMock()
    postgres.test_connection = AsyncMock(return_value=True)
    app.state.postgres = postgres
    client = TestClient(app)

    response = client.get("/ping")

    assert response.json() == {"status": "ok", "store": "postgres"}
    postgres.test_connection.assert_awaited_once()
