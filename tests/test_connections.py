import inspect
from collections.abc import Awaitable
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from opsdesk.services.postgres import PostgresPool, translate_errors
from opsdesk.tickets.errors import DependencyError


@pytest.mark.asyncio
async def test_postgres_pool_health_check(monkeypatch):
    connection_mock = AsyncMock()

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()
    created: list[dict] = []

    async def create_pool(**kwargs):
        created.append(kwargs)
        return pool_mock

    monkeypatch.setattr("opsdesk.services.postgres.asyncpg.create_pool", create_pool)

    postgres = PostgresPool("postgresql://test", min_size=2, max_size=4)
    assert await postgres.test_connection() is True
    assert await postgres.get_pool() is pool_mock
    connection_mock.execute.assert_awaited_with("SELECT 1")
    assert created == [{"dsn": "postgresql://test", "min_size": 2, "max_size": 4}]

    await postgres.close()
    pool_mock.close.assert_awaited()


@pytest.mark.asyncio
async def test_postgres_pool_connect_failure_is_dependency_error(monkeypatch):
    async def create_pool(**kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr("opsdesk.services.postgres.asyncpg.create_pool", create_pool)

    with pytest.raises(DependencyError, match="Connecting to PostgreSQL failed"):
        await PostgresPool("postgresql://test").get_pool()


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
    monkeypatch.setattr("opsdesk.services.postgres.asyncio.wait_for", wait_for_stub)
    monkeypatch.setattr("opsdesk.services.postgres.asyncio.run", run_stub)

    result = PostgresPool("postgresql://test").test_connection_sync(timeout=0.1)

    assert result is True
    assert inspect.iscoroutine(captured.get("coro"))
    assert captured["timeout"] == 0.1
    assert run_calls == ["wait-result"]


@pytest.mark.asyncio
async def test_translate_errors_wraps_driver_failures():
    with pytest.raises(DependencyError) as excinfo:
        async with translate_errors("Loading ticket"):
            raise asyncpg.InterfaceError("pool is closed")

    assert str(excinfo.value).startswith("Loading ticket failed")
    assert isinstance(excinfo.value.__cause__, asyncpg.InterfaceError)


@pytest.mark.asyncio
async def test_translate_errors_leaves_other_errors_alone():
    with pytest.raises(KeyError):
        async with translate_errors("Loading ticket"):
            raise KeyError("status")
