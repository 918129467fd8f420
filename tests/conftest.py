"""
Pytest configuration for the whisky collection service.

Provides fixtures for:
- Settings override for tests
- An in-memory fake of the pooled PostgreSQL store (unit tests)
- Database connection management (integration tests)
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import psycopg
import pytest

from whisky_api.bootstrap import SQL_COUNT, SQL_CREATE_TABLE
from whisky_api.config import Settings
from whisky_api.gateway import (
    SQL_DELETE,
    SQL_INSERT,
    SQL_SELECT_ALL,
    SQL_SELECT_ONE,
    SQL_UPDATE,
    WhiskyGateway,
)

STATEMENT_NAMES = {
    SQL_CREATE_TABLE: "create_table",
    SQL_COUNT: "count",
    SQL_INSERT: "insert",
    SQL_SELECT_ONE: "select_one",
    SQL_SELECT_ALL: "select_all",
    SQL_UPDATE: "update",
    SQL_DELETE: "delete",
}


class FakeDatabase:
    """
    In-memory stand-in for the `whisky` table.

    Records every statement (by name) and every pool event in `events`, so tests
    can assert on ordering. Failures are injected per statement name.
    """

    def __init__(self, table_exists: bool = False) -> None:
        self.table_exists = table_exists
        self.rows: Dict[int, Tuple[str, str]] = {}
        self.next_id = 1
        self.events: List[str] = []
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.delay = 0.0
        self.overrides: Dict[str, List[Tuple[Any, ...]]] = {}
        self._failures: Dict[str, Tuple[BaseException, int]] = {}

    def fail(self, statement: str, exc: BaseException, after: int = 0) -> None:
        """Raise `exc` on the call to `statement` that follows `after` successes."""
        self._failures[statement] = (exc, after)

    def insert_row(self, name: str, origin: str) -> int:
        whisky_id = self.next_id
        self.next_id += 1
        self.rows[whisky_id] = (name, origin)
        return whisky_id

    async def execute(
        self, sql: str, params: Sequence[Any]
    ) -> Tuple[List[Tuple[Any, ...]], int]:
        name = STATEMENT_NAMES[sql]
        self.executed.append((name, tuple(params)))
        self.events.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)

        if name in self._failures:
            exc, remaining = self._failures[name]
            if remaining == 0:
                raise exc
            self._failures[name] = (exc, remaining - 1)

        if name in self.overrides:
            rows = self.overrides[name]
            return rows, len(rows)

        if name == "create_table":
            self.table_exists = True
            return [], -1
        if not self.table_exists:
            raise psycopg.errors.UndefinedTable('relation "whisky" does not exist')

        if name == "count":
            return [(len(self.rows),)], 1
        if name == "insert":
            whisky_id = self.insert_row(params[0], params[1])
            return [(whisky_id,)], 1
        if name == "select_one":
            whisky_id = params[0]
            if whisky_id in self.rows:
                return [(whisky_id, *self.rows[whisky_id])], 1
            return [], 0
        if name == "select_all":
            rows = [(whisky_id, *values) for whisky_id, values in self.rows.items()]
            return rows, len(rows)
        if name == "update":
            new_name, new_origin, whisky_id = params
            if whisky_id not in self.rows:
                return [], 0
            self.rows[whisky_id] = (new_name, new_origin)
            return [], 1
        if name == "delete":
            removed = self.rows.pop(params[0], None)
            return [], 0 if removed is None else 1
        raise AssertionError(f"Unhandled statement {name}")


class FakeCursor:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db
        self._rows: List[Tuple[Any, ...]] = []
        self.rowcount = -1

    async def __aenter__(self) -> "FakeCursor":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self._rows, self.rowcount = await self._db.execute(sql, params)

    async def fetchall(self) -> List[Tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    async def fetchone(self) -> Optional[Tuple[Any, ...]]:
        return self._rows.pop(0) if self._rows else None


class FakeConnection:
    def __init__(self, db: FakeDatabase) -> None:
        self._db = db

    def cursor(self) -> FakeCursor:
        return FakeCursor(self._db)

    async def commit(self) -> None:
        self._db.events.append("commit")


class FakePool:
    """Connection provider that counts every checkout and every return."""

    def __init__(
        self,
        db: FakeDatabase,
        fail_acquire: Optional[BaseException] = None,
        fail_release: Optional[BaseException] = None,
    ) -> None:
        self.db = db
        self.fail_acquire = fail_acquire
        self.fail_release = fail_release
        self.closed = False
        self.acquired = 0
        self.released = 0
        self.in_use = 0
        self.peak_in_use = 0

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[FakeConnection]:
        if self.fail_acquire is not None:
            self.db.events.append("acquire_failed")
            raise self.fail_acquire
        self.acquired += 1
        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        self.db.events.append("acquire")
        try:
            yield FakeConnection(self.db)
        finally:
            self.in_use -= 1
            self.released += 1
            self.db.events.append("release")
        if self.fail_release is not None:
            raise self.fail_release

    async def close(self) -> None:
        self.closed = True


class FakeListener:
    def __init__(self, db: FakeDatabase, fail: Optional[BaseException] = None) -> None:
        self._db = db
        self._fail = fail
        self.started = False

    async def start(self) -> None:
        self._db.events.append("listener_start")
        if self._fail is not None:
            raise self._fail
        self.started = True


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase(table_exists=True)


@pytest.fixture
def fake_pool(fake_db: FakeDatabase) -> FakePool:
    return FakePool(fake_db)


@pytest.fixture
def gateway(fake_pool: FakePool) -> WhiskyGateway:
    return WhiskyGateway(fake_pool, call_timeout=1.0)


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "whiskies"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="function")
def clean_whisky_table(test_dsn: str, db_connection_available: bool):
    """
    Drop the whisky table before and after each test function.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    def _drop() -> None:
        with psycopg.connect(test_dsn) as conn:
            conn.execute("DROP TABLE IF EXISTS whisky;")

    _drop()
    yield
    _drop()


async def wait_until(condition, timeout: float = 2.0) -> bool:
    """Poll `condition` until it holds or `timeout` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(0.01)
    return True


async def open_request(port: int, method: str, path: str):
    """Write a bare HTTP/1.1 request to a local listener; returns (reader, writer)."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(
        f"{method} {path} HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n".encode()
    )
    await writer.drain()
    return reader, writer


async def read_response(reader: asyncio.StreamReader) -> Tuple[int, bytes]:
    """Read a full response from a `Connection: close` exchange; returns (status, body)."""
    raw = await reader.read()
    head, _, body = raw.partition(b"\r\n\r\n")
    status = int(head.split(b" ", 2)[1])
    return status, body
