"""
Global pytest configuration and fixtures for psqlchunks tests.

This module provides:
- An in-memory stand-in for asyncpg connections
- Helpers building asyncpg server errors and chunks
- Patching of asyncpg.connect so sessions use the fake connection

E2E tests run against a real Postgres server configured through the usual
POSTGRES_* settings and are skipped unless E2E_TEST=1 is set.
"""

from __future__ import annotations

import asyncio
import os
from typing import Optional
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from psqlchunks.connectors.postgres_session import PostgresSession
from psqlchunks.models import Chunk


def is_e2e_test() -> bool:
    """Check if we're running E2E tests (vs unit tests)."""
    return os.getenv("E2E_TEST", "").lower() in ("1", "true", "yes")


# =============================================================================
# Fakes
# =============================================================================


class FakeConnection:
    """
    Records every statement and raises configured errors.

    ``failures`` maps statement text to the exception raised when it is
    executed; ``blockers`` maps statement text to an event the statement
    waits on before completing.
    """

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.executed: list[str] = []
        self.fetched: list[tuple] = []
        self.failures: dict[str, BaseException] = {}
        self.blockers: dict[str, asyncio.Event] = {}
        self.fetchval_result: object = True
        self.closed = False

    async def execute(self, sql: str) -> str:
        if self.closed:
            raise asyncpg.exceptions.ConnectionDoesNotExistError(
                "connection is closed"
            )
        self.executed.append(sql)
        blocker = self.blockers.get(sql)
        if blocker is not None:
            await blocker.wait()
        exc = self.failures.get(sql)
        if exc is not None:
            raise exc
        return "OK"

    async def fetchval(self, sql: str, *args):
        self.fetched.append((sql, *args))
        return self.fetchval_result

    def is_closed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        self.closed = True

    def get_server_pid(self) -> int:
        return self.pid


def pg_error(
    cls: type = asyncpg.exceptions.PostgresSyntaxError,
    message: str = "syntax error",
    *,
    position: Optional[str] = None,
    detail: Optional[str] = None,
    hint: Optional[str] = None,
) -> asyncpg.PostgresError:
    """Build an asyncpg server error carrying the given diagnostic fields."""
    exc = cls(message)
    exc.message = message
    exc.position = position
    exc.detail = detail
    exc.hint = hint
    return exc


def make_chunk(
    sql: str = "select 1;\n",
    start_line: int = 1,
    end_line: Optional[int] = None,
    description: str = "",
) -> Chunk:
    if end_line is None:
        end_line = start_line + max(sql.count("\n") - 1, 0)
    return Chunk(
        start_line=start_line, end_line=end_line, sql=sql, description=description
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def connect_mock(fake_conn: FakeConnection):
    """asyncpg.connect patched to hand out ``fake_conn``."""
    mock = AsyncMock(return_value=fake_conn)
    with patch("psqlchunks.connectors.postgres_session.asyncpg.connect", new=mock):
        yield mock


@pytest.fixture
def session(connect_mock) -> PostgresSession:
    return PostgresSession(
        host="localhost",
        port=5432,
        database="chunks",
        user="tester",
        password="secret",
        retry_delay=0.0,
    )


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "e2e: marks tests as end-to-end tests requiring real database (deselect with '-m \"not e2e\"')",
    )


def pytest_collection_modifyitems(config, items):
    """
    Automatically skip E2E tests unless E2E_TEST=1 is set.
    """
    skip_e2e = pytest.mark.skip(reason="E2E tests require E2E_TEST=1")

    for item in items:
        if "e2e" in item.keywords and not is_e2e_test():
            item.add_marker(skip_e2e)
