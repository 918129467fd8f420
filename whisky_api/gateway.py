"""
Resource gateway: CRUD operations for whiskies against the PostgreSQL store.

Every operation:
- validates its input before touching the store,
- borrows a pooled connection for exactly the duration of the call (or reuses
  one handed in by the caller, as the bootstrap seeding step does),
- runs under a client-side deadline, and
- binds every value as a query parameter.

Store outcomes are mapped to a Whisky, a list of Whiskies, or one of the
errors in `whisky_api.domain.errors`.
"""

from __future__ import annotations

import asyncio
import re
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, NamedTuple, Optional, Protocol, Sequence, Union

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import PoolTimeout
from pydantic import ValidationError

from whisky_api.domain.errors import (
    InvalidIdentifier,
    InvalidPayload,
    NotFound,
    StoreError,
    StoreInvariantViolation,
    StoreReadFailed,
    StoreTimeout,
    StoreWriteFailed,
)
from whisky_api.domain.models import Whisky, WhiskyUpdate, record_from_row
from whisky_api.utils.logging import get_logger

log = get_logger(__name__)

SQL_INSERT = "INSERT INTO whisky (name, origin) VALUES (%s, %s) RETURNING id"
SQL_SELECT_ONE = "SELECT id, name, origin FROM whisky WHERE id = %s"
SQL_SELECT_ALL = "SELECT id, name, origin FROM whisky"
SQL_UPDATE = "UPDATE whisky SET name = %s, origin = %s WHERE id = %s"
SQL_DELETE = "DELETE FROM whisky WHERE id = %s"

DEFAULT_CALL_TIMEOUT_SECONDS = 10.0

_IDENTIFIER = re.compile(r"-?[0-9]+")

Payload = Union[Whisky, WhiskyUpdate, Mapping[str, Any]]


class ConnectionProvider(Protocol):
    """Anything that lends out a connection as an async context manager."""

    def connection(self) -> AbstractAsyncContextManager[Any]: ...


class _Outcome(NamedTuple):
    rows: List[Sequence[Any]]
    rowcount: int


def parse_identifier(raw: Union[str, int, None]) -> int:
    """
    Convert a path identifier to the integer key type.

    Raises InvalidIdentifier for anything that is not a plain base-10 integer.
    """
    if raw is None or isinstance(raw, bool):
        raise InvalidIdentifier("Missing whisky id")
    if isinstance(raw, int):
        return raw
    text = str(raw).strip()
    if not _IDENTIFIER.fullmatch(text):
        raise InvalidIdentifier(f"Invalid whisky id '{raw}'")
    return int(text)


def _payload_dict(payload: Payload) -> dict:
    if isinstance(payload, (Whisky, WhiskyUpdate)):
        return payload.model_dump()
    if isinstance(payload, Mapping):
        return dict(payload)
    raise InvalidPayload(f"Expected a JSON object, got {type(payload).__name__}")


def _new_record(payload: Payload) -> Whisky:
    data = _payload_dict(payload)
    if data.get("id") is not None:
        raise InvalidPayload("A new whisky must not carry an id")
    try:
        return Whisky.model_validate(data)
    except ValidationError as exc:
        raise InvalidPayload("Invalid whisky payload", exc) from exc


def _replacement(payload: Payload) -> WhiskyUpdate:
    data = _payload_dict(payload)
    missing = [key for key in ("name", "origin") if data.get(key) is None]
    if missing:
        raise InvalidPayload(f"Missing field(s): {', '.join(missing)}")
    try:
        return WhiskyUpdate.model_validate(data)
    except ValidationError as exc:
        raise InvalidPayload("Invalid whisky payload", exc) from exc


class WhiskyGateway:
    """
    Stateless CRUD operations over the `whisky` table.

    Safe to call concurrently once the schema exists; the only shared resource
    is the connection provider.
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider
        self._call_timeout = call_timeout

    @asynccontextmanager
    async def _borrow(self, conn: Optional[Any]) -> AsyncIterator[Any]:
        if conn is not None:
            yield conn
            return
        async with self._provider.connection() as pooled:
            yield pooled

    async def _execute(
        self,
        operation: str,
        sql: str,
        params: Sequence[Any],
        *,
        failure: type[StoreError],
        fetch: bool = False,
        conn: Optional[Any] = None,
    ) -> _Outcome:
        try:
            async with asyncio.timeout(self._call_timeout):
                async with self._borrow(conn) as active:
                    async with active.cursor() as cur:
                        await cur.execute(sql, params)
                        rows = list(await cur.fetchall()) if fetch else []
                        return _Outcome(rows=rows, rowcount=cur.rowcount)
        except (TimeoutError, PoolTimeout, pg_errors.QueryCanceled) as exc:
            log.error(
                f"[STORE TIMEOUT] {operation}",
                exc_info=exc,
                extra={"operation": operation, "timeout_seconds": self._call_timeout},
            )
            raise StoreTimeout(f"{operation} exceeded its deadline", exc) from exc
        except psycopg.Error as exc:
            log.error(
                f"[STORE FAILED] {operation}",
                exc_info=exc,
                extra={"operation": operation, "error_type": type(exc).__name__},
            )
            raise failure(f"{operation} failed", exc) from exc

    async def create(self, payload: Payload, *, conn: Optional[Any] = None) -> Whisky:
        """
        Insert a new whisky and return it with the store-generated id.

        Raises InvalidPayload if the payload carries an id or is malformed, and
        StoreWriteFailed if the insert fails.
        """
        record = _new_record(payload)
        outcome = await self._execute(
            "create",
            SQL_INSERT,
            (record.name, record.origin),
            failure=StoreWriteFailed,
            fetch=True,
            conn=conn,
        )
        if len(outcome.rows) != 1:
            raise StoreInvariantViolation(
                f"Insert returned {len(outcome.rows)} generated keys, expected 1"
            )
        created = record.model_copy(update={"id": outcome.rows[0][0]})
        log.info("Whisky created", extra={"whisky_id": created.id})
        return created

    async def get(self, raw_id: Union[str, int, None], *, conn: Optional[Any] = None) -> Whisky:
        whisky_id = parse_identifier(raw_id)
        outcome = await self._execute(
            "get",
            SQL_SELECT_ONE,
            (whisky_id,),
            failure=StoreReadFailed,
            fetch=True,
            conn=conn,
        )
        if not outcome.rows:
            raise NotFound(f"Whisky {whisky_id} not found")
        if len(outcome.rows) > 1:
            raise StoreInvariantViolation(
                f"Primary key {whisky_id} matched {len(outcome.rows)} rows"
            )
        return record_from_row(outcome.rows[0])

    async def list(self, *, conn: Optional[Any] = None) -> List[Whisky]:
        """All whiskies in store-native order."""
        outcome = await self._execute(
            "list", SQL_SELECT_ALL, (), failure=StoreReadFailed, fetch=True, conn=conn
        )
        return [record_from_row(row) for row in outcome.rows]

    async def update(
        self,
        raw_id: Union[str, int, None],
        payload: Payload,
        *,
        conn: Optional[Any] = None,
    ) -> Whisky:
        """
        Overwrite name and origin of an existing whisky.

        The returned record is rebuilt from the inputs, not re-read.
        """
        whisky_id = parse_identifier(raw_id)
        replacement = _replacement(payload)
        outcome = await self._execute(
            "update",
            SQL_UPDATE,
            (replacement.name, replacement.origin, whisky_id),
            failure=StoreWriteFailed,
            conn=conn,
        )
        if outcome.rowcount == 0:
            raise NotFound(f"Whisky {whisky_id} not found")
        return Whisky(id=whisky_id, name=replacement.name, origin=replacement.origin)

    async def delete(self, raw_id: Union[str, int, None], *, conn: Optional[Any] = None) -> None:
        """Delete by id; deleting an unknown id is not an error."""
        whisky_id = parse_identifier(raw_id)
        await self._execute(
            "delete", SQL_DELETE, (whisky_id,), failure=StoreWriteFailed, conn=conn
        )
        log.info("Whisky deleted", extra={"whisky_id": whisky_id})


__all__ = [
    "ConnectionProvider",
    "SQL_DELETE",
    "SQL_INSERT",
    "SQL_SELECT_ALL",
    "SQL_SELECT_ONE",
    "SQL_UPDATE",
    "WhiskyGateway",
    "parse_identifier",
]
