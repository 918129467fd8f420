"""
Bootstrap pipeline for the whisky collection service.

Brings the process from "no connection" to "accepting requests" through a fixed
sequence of stages, each one gated on the success of the previous one:

    idle -> connection_acquired -> schema_ensured -> seeded -> listener_started -> ready
                 (any stage failure) -> failed

The first failure aborts the pipeline and completes the readiness signal with
that cause. Nothing is retried here; restarting is the supervisor's job.

Usage:
    from whisky_api.bootstrap import BootstrapOrchestrator

    orchestrator = BootstrapOrchestrator(pool_manager, gateway, listener)
    if await orchestrator.run():
        await listener.serve()
"""

from __future__ import annotations

import asyncio
import time
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

import psycopg

from whisky_api.domain.errors import (
    BootstrapError,
    ConnectionFailure,
    ListenerFailure,
    SchemaFailure,
    SeedFailure,
    WhiskyApiError,
)
from whisky_api.domain.models import NAME_MAX_LENGTH, ORIGIN_MAX_LENGTH, Whisky
from whisky_api.gateway import ConnectionProvider, WhiskyGateway
from whisky_api.utils.logging import get_logger

log = get_logger(__name__)

SQL_CREATE_TABLE = (
    "CREATE TABLE IF NOT EXISTS whisky ("
    "id SERIAL PRIMARY KEY, "
    f"name VARCHAR({NAME_MAX_LENGTH}) NOT NULL, "
    f"origin VARCHAR({ORIGIN_MAX_LENGTH}) NOT NULL)"
)
SQL_COUNT = "SELECT COUNT(*) FROM whisky"

DEFAULT_WHISKIES: Tuple[Whisky, ...] = (
    Whisky(name="Bowmore 15 Years Laimrig", origin="Scotland, Islay"),
    Whisky(name="Talisker 57° North", origin="Scotland, Island"),
)

DEFAULT_STAGE_TIMEOUT_SECONDS = 30.0


class BootstrapStage(str, Enum):
    IDLE = "idle"
    CONNECTION_ACQUIRED = "connection_acquired"
    SCHEMA_ENSURED = "schema_ensured"
    SEEDED = "seeded"
    LISTENER_STARTED = "listener_started"
    READY = "ready"
    FAILED = "failed"


class Listener(Protocol):
    """Network listener bound during the listener stage."""

    async def start(self) -> None: ...


class ReadinessSignal:
    """
    One-shot completion notification for the process supervisor.

    Completes exactly once, with success or with a failure cause. Later attempts
    to complete it are ignored and reported as such.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._completed = False
        self._cause: Optional[BaseException] = None
        self.stage = BootstrapStage.IDLE
        self._callbacks: List[Callable[["ReadinessSignal"], Any]] = []

    @property
    def done(self) -> bool:
        return self._completed

    @property
    def succeeded(self) -> bool:
        return self._completed and self._cause is None

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    def add_done_callback(self, callback: Callable[["ReadinessSignal"], Any]) -> None:
        """Register a callback; runs immediately if the signal already completed."""
        if self._completed:
            callback(self)
        else:
            self._callbacks.append(callback)

    def succeed(self) -> bool:
        return self._complete(None)

    def fail(self, cause: BaseException) -> bool:
        return self._complete(cause)

    def _complete(self, cause: Optional[BaseException]) -> bool:
        if self._completed:
            log.warning(
                "Readiness signal already completed; ignoring",
                extra={"ignored_cause": repr(cause) if cause else None},
            )
            return False
        self._completed = True
        self._cause = cause
        self.stage = BootstrapStage.READY if cause is None else BootstrapStage.FAILED
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)
        return True

    async def wait(self) -> None:
        """Wait for completion; re-raises the failure cause, if any."""
        await self._event.wait()
        if self._cause is not None:
            raise self._cause


class BootstrapOrchestrator:
    """
    Runs the bootstrap stages strictly in order and reports one outcome.

    Parameters
    ----------
    provider : ConnectionProvider
        Source of the bootstrap connection (the pool manager in production).
    gateway : WhiskyGateway
        Used by the seeding stage to insert the default records.
    listener : Listener
        Bound during the listener stage.
    readiness : ReadinessSignal | None
        Completed once when the pipeline reaches `ready` or `failed`.
    seed : sequence of Whisky
        Records inserted, in order, when the table is empty.
    stage_timeout : float
        Deadline for the schema and seed stages.
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        gateway: WhiskyGateway,
        listener: Listener,
        readiness: Optional[ReadinessSignal] = None,
        seed: Sequence[Whisky] = DEFAULT_WHISKIES,
        stage_timeout: float = DEFAULT_STAGE_TIMEOUT_SECONDS,
    ) -> None:
        self._provider = provider
        self._gateway = gateway
        self._listener = listener
        self.readiness = readiness or ReadinessSignal()
        self._seed_records = tuple(seed)
        self._stage_timeout = stage_timeout
        self.stage = BootstrapStage.IDLE
        self.history: List[BootstrapStage] = [BootstrapStage.IDLE]
        self.seeded_count = 0
        self._started_at = 0.0

    def _advance(self, stage: BootstrapStage) -> None:
        self.stage = stage
        self.readiness.stage = stage
        self.history.append(stage)
        log.info(
            f"[BOOTSTRAP] {stage.value}",
            extra={
                "stage": stage.value,
                "elapsed_seconds": round(time.perf_counter() - self._started_at, 3),
            },
        )

    async def run(self) -> bool:
        """
        Execute every stage; return True when the service is ready.

        A stage failure completes the readiness signal with the captured cause
        and returns False. The orchestrator cannot be run twice.
        """
        if self.stage is not BootstrapStage.IDLE:
            raise RuntimeError(f"Bootstrap already ran (stage={self.stage.value})")
        self._started_at = time.perf_counter()

        try:
            await self._prepare_store()
            await self._start_listener()
        except BootstrapError as exc:
            self._fail(exc)
            return False
        except BaseException as exc:
            self._fail(exc)
            raise

        self._advance(BootstrapStage.READY)
        self.readiness.succeed()
        return True

    def _fail(self, cause: BaseException) -> None:
        failed_from = self.stage
        self.stage = BootstrapStage.FAILED
        self.history.append(BootstrapStage.FAILED)
        log.error(
            f"[BOOTSTRAP FAILED] after {failed_from.value}",
            exc_info=cause,
            extra={
                "stage": BootstrapStage.FAILED.value,
                "last_stage": failed_from.value,
                "error_type": type(cause).__name__,
                "error_stage": getattr(cause, "stage", None),
            },
        )
        self.readiness.fail(cause)

    async def _prepare_store(self) -> None:
        """Run the connection, schema and seed stages on one borrowed connection."""
        try:
            async with AsyncExitStack() as stack:
                conn = await self._acquire_connection(stack)
                await self._ensure_schema(conn)
                await self._seed_if_empty(conn)
        except (psycopg.Error, OSError) as exc:
            # raised while handing the connection back to the pool
            raise ConnectionFailure("Could not return the bootstrap connection", exc) from exc

    async def _acquire_connection(self, stack: AsyncExitStack) -> Any:
        try:
            conn = await stack.enter_async_context(self._provider.connection())
        except (psycopg.Error, OSError, TimeoutError) as exc:
            raise ConnectionFailure("Could not acquire a database connection", exc) from exc
        self._advance(BootstrapStage.CONNECTION_ACQUIRED)
        return conn

    async def _ensure_schema(self, conn: Any) -> None:
        try:
            async with asyncio.timeout(self._stage_timeout):
                async with conn.cursor() as cur:
                    await cur.execute(SQL_CREATE_TABLE)
                await conn.commit()
        except (psycopg.Error, TimeoutError) as exc:
            raise SchemaFailure("Could not create the whisky table", exc) from exc
        self._advance(BootstrapStage.SCHEMA_ENSURED)

    async def _seed_if_empty(self, conn: Any) -> None:
        try:
            async with asyncio.timeout(self._stage_timeout):
                async with conn.cursor() as cur:
                    await cur.execute(SQL_COUNT)
                    row = await cur.fetchone()
                existing = int(row[0]) if row else 0

                if existing == 0:
                    for record in self._seed_records:
                        await self._gateway.create(record, conn=conn)
                        self.seeded_count += 1
                    await conn.commit()
                else:
                    log.info("Store already populated; skipping seed", extra={"rows": existing})
        except (psycopg.Error, TimeoutError, WhiskyApiError) as exc:
            raise SeedFailure(
                f"Seeding stopped after {self.seeded_count} of {len(self._seed_records)} records",
                exc,
            ) from exc
        self._advance(BootstrapStage.SEEDED)

    async def _start_listener(self) -> None:
        try:
            await self._listener.start()
        except ListenerFailure:
            raise
        except OSError as exc:
            raise ListenerFailure("Could not bind the HTTP listener", exc) from exc
        self._advance(BootstrapStage.LISTENER_STARTED)


__all__ = [
    "BootstrapOrchestrator",
    "BootstrapStage",
    "DEFAULT_WHISKIES",
    "Listener",
    "ReadinessSignal",
    "SQL_COUNT",
    "SQL_CREATE_TABLE",
]
