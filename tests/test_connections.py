from __future__ import annotations

import inspect
from collections.abc import Awaitable
from unittest.mock import AsyncMock, MagicMock

import pytest

from apps.api.services.database import PostgresConnectionTester, to_asyncpg_dsn, to_libpq_dsn


@pytest.mark.asyncio
async def test_postgres_connection_tester(monkeypatch):
    connection_mock = AsyncMock()

    class DummyAcquire:
        async def __aenter__(self):
            return connection_mock

        async def __aexit__(self, exc_type, exc, tb):
            return False

    pool_mock = MagicMock()
    pool_mock.acquire.return_value = DummyAcquire()
    pool_mock.close = AsyncMock()
    captured: dict[str, object] = {}

    async def create_pool(**kwargs):
        captured.update(kwargs)
        return pool_mock

    monkeypatch.setattr("apps.api.services.database.asyncpg.create_pool", create_pool)

    tester = PostgresConnectionTester("postgresql+asyncpg://db/bugdesk")
    assert await tester.test_connection() is True
    connection_mock.execute.assert_awaited_with("SELECT 1")
    assert captured["dsn"] == "postgresql://db/bugdesk"
    await tester.close()
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

    monkeypatch.setattr(PostgresConnectionTester, "test_connection", fake_test)
    monkeypatch.setattr("apps.api.services.database.asyncio.wait_for", wait_for_stub)
    monkeypatch.setattr("apps.api.services.database.asyncio.run", run_stub)

    tester = PostgresConnectionTester("postgresql://test")

    assert tester.test_connection_sync(timeout=0.1) is True
    assert inspect.iscoroutine(captured.get("coro"))
    assert captured["timeout"] == 0.1
    assert run_calls == ["wait-result"]


@pytest.mark.parametrize(
    ("dsn", "expected"),
    [
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ],
)
def test_to_asyncpg_dsn(dsn, expected):
    assert to_asyncpg_dsn(dsn) == expected


def test_to_libpq_dsn():
    assert to_libpq_dsn("postgresql+asyncpg://u@h/db") == "postgresql://u@h/db"
    assert to_libpq_dsn("postgresql://u@h/db") == "postgresql://u@h/db"
