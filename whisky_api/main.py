from __future__ import annotations

import asyncio
import sys
from typing import List, Optional

import typer

from whisky_api.api.server import HttpListener, create_app
from whisky_api.bootstrap import BootstrapOrchestrator, ReadinessSignal
from whisky_api.config import Settings, get_settings
from whisky_api.domain.errors import WhiskyApiError
from whisky_api.domain.models import Whisky
from whisky_api.gateway import WhiskyGateway
from whisky_api.infrastructure.db_factory import PoolManager, redacted_dsn
from whisky_api.reporter import print_whiskies
from whisky_api.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Whisky collection service CLI.")
log = get_logger(__name__)


def _report_readiness(signal: ReadinessSignal) -> None:
    if signal.succeeded:
        log.info("[READY] accepting requests")
    else:
        log.error("[NOT READY] bootstrap failed", extra={"cause": str(signal.cause)})


async def _serve(settings: Settings, port: int) -> int:
    """
    Bootstrap the service and serve HTTP until shutdown. Returns the exit code.
    """
    log.info("Starting whisky-api", extra={"app_env": settings.app_env, "port": port})
    pool = PoolManager(settings)
    gateway = WhiskyGateway(pool, call_timeout=settings.store_call_timeout_seconds)
    readiness = ReadinessSignal()
    readiness.add_done_callback(_report_readiness)
    listener = HttpListener(
        create_app(gateway, readiness),
        host=settings.http_host,
        port=port,
        log_level=settings.log_level,
    )
    orchestrator = BootstrapOrchestrator(
        pool,
        gateway,
        listener,
        readiness=readiness,
        stage_timeout=settings.store_call_timeout_seconds,
    )

    try:
        if not await orchestrator.run():
            return 1
        await listener.serve()
        return 0
    finally:
        listener.close()
        await pool.close()


async def _fetch_all(settings: Settings) -> List[Whisky]:
    pool = PoolManager(settings)
    try:
        gateway = WhiskyGateway(pool, call_timeout=settings.store_call_timeout_seconds)
        return await gateway.list()
    finally:
        await pool.close()


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"env={settings.app_env} | "
        f"DB={redacted_dsn(settings)} | "
        f"pool=({settings.db_pool_min_size},{settings.db_pool_max_size}) "
        f"statement_timeout_ms={settings.db_statement_timeout_ms} | "
        f"HTTP={settings.http_host}:{settings.http_port}"
    )


@app.command()
def serve(
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Override the HTTP port (default from settings).",
    ),
) -> None:
    """
    Run the bootstrap pipeline, then serve the HTTP API until interrupted.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    exit_code = asyncio.run(_serve(settings, port or settings.http_port))
    raise typer.Exit(code=exit_code)


@app.command("list")
def list_whiskies() -> None:
    """
    Print every whisky currently in the store.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    try:
        whiskies = asyncio.run(_fetch_all(settings))
    except WhiskyApiError as exc:
        typer.echo(f"Could not read the collection: {exc}", err=True)
        raise typer.Exit(code=1)
    print_whiskies(whiskies)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
