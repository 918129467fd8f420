"""FastAPI application and HTTP listener for the whisky collection.

Provides HTTP endpoints for:
- Whisky CRUD (/api/whiskies, /api/whiskies/{whisky_id})
- Health checks (/health, /ready)
- A plain greeting page (/)

The listener binds its socket during the bootstrap listener stage but only
starts routing requests once `serve()` is called after the service is ready.
"""

from __future__ import annotations

import asyncio
import socket
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

import uvicorn
from fastapi import APIRouter, Body, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse

from whisky_api import __version__
from whisky_api.bootstrap import BootstrapStage, ReadinessSignal
from whisky_api.domain.errors import (
    ClientDisconnected,
    InvalidPayload,
    ListenerFailure,
    ServiceNotReady,
    WhiskyApiError,
)
from whisky_api.gateway import WhiskyGateway
from whisky_api.utils.logging import get_logger

log = get_logger(__name__)

COLLECTION_PATH = "/api/whiskies"

T = TypeVar("T")


def get_gateway(request: Request) -> WhiskyGateway:
    return request.app.state.gateway


def require_ready(request: Request) -> None:
    """Refuse to route CRUD traffic before bootstrap has completed successfully."""
    readiness: Optional[ReadinessSignal] = request.app.state.readiness
    if readiness is not None and not readiness.succeeded:
        raise ServiceNotReady("Service is not ready")


router = APIRouter(prefix=COLLECTION_PATH, dependencies=[Depends(require_ready)])


async def _client_disconnect(request: Request) -> None:
    """Return once the ASGI server reports that the client went away."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _while_connected(request: Request, operation: Awaitable[T]) -> T:
    """
    Run a store call for as long as the client stays connected.

    Uvicorn does not cancel a handler when its client disconnects, so the call
    runs as its own task and is cancelled on `http.disconnect`. Cancellation
    unwinds the gateway's scoped connection back to the pool.
    """
    call = asyncio.ensure_future(operation)
    disconnect = asyncio.ensure_future(_client_disconnect(request))
    try:
        await asyncio.wait({call, disconnect}, return_when=asyncio.FIRST_COMPLETED)
        if not call.done():
            call.cancel()
            await asyncio.wait({call})
            if call.cancelled():
                raise ClientDisconnected("Client disconnected; store call cancelled")
        return call.result()
    finally:
        for task in (call, disconnect):
            if not task.done():
                task.cancel()


@router.get("")
async def list_whiskies(
    request: Request, gateway: WhiskyGateway = Depends(get_gateway)
) -> List[Dict[str, Any]]:
    whiskies = await _while_connected(request, gateway.list())
    return [whisky.model_dump() for whisky in whiskies]


@router.post("", status_code=201)
async def add_whisky(
    request: Request,
    payload: Any = Body(None),
    gateway: WhiskyGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    if payload is None:
        raise _missing_body()
    created = await _while_connected(request, gateway.create(payload))
    return created.model_dump()


@router.get("/{whisky_id}")
async def get_whisky(
    whisky_id: str, request: Request, gateway: WhiskyGateway = Depends(get_gateway)
) -> Dict[str, Any]:
    whisky = await _while_connected(request, gateway.get(whisky_id))
    return whisky.model_dump()


@router.put("/{whisky_id}")
async def update_whisky(
    whisky_id: str,
    request: Request,
    payload: Any = Body(None),
    gateway: WhiskyGateway = Depends(get_gateway),
) -> Dict[str, Any]:
    if payload is None:
        raise _missing_body()
    updated = await _while_connected(request, gateway.update(whisky_id, payload))
    return updated.model_dump()


@router.delete("/{whisky_id}", status_code=204)
async def delete_whisky(
    whisky_id: str, request: Request, gateway: WhiskyGateway = Depends(get_gateway)
) -> Response:
    await _while_connected(request, gateway.delete(whisky_id))
    return Response(status_code=204)


def _missing_body() -> WhiskyApiError:
    return InvalidPayload("Missing request body")


async def _domain_error_handler(request: Request, exc: WhiskyApiError) -> JSONResponse:
    extra = {
        "method": request.method,
        "path": request.url.path,
        "status": exc.status_code,
        "error_type": type(exc).__name__,
    }
    if exc.status_code >= 500:
        log.error(f"[REQUEST FAILED] {exc}", exc_info=exc.cause or exc, extra=extra)
    else:
        log.info(f"[REQUEST REJECTED] {exc}", extra=extra)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "message": exc.message},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    log.info(
        "[REQUEST REJECTED] malformed request",
        extra={"method": request.method, "path": request.url.path, "status": 400},
    )
    return JSONResponse(
        status_code=400,
        content={"error": "InvalidPayload", "message": "Malformed request"},
    )


def create_app(
    gateway: WhiskyGateway,
    readiness: Optional[ReadinessSignal] = None,
) -> FastAPI:
    """Build the FastAPI application around a gateway and readiness signal."""
    app = FastAPI(
        title="Whisky Collection API",
        description="CRUD API over a whisky collection",
        version=__version__,
    )
    app.state.gateway = gateway
    app.state.readiness = readiness

    app.add_exception_handler(WhiskyApiError, _domain_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return "<h1>Hello from the whisky collection</h1>"

    @app.get("/health")
    async def health() -> Dict[str, str]:
        """Liveness probe - is the process serving HTTP?"""
        return {"status": "alive"}

    @app.get("/ready")
    async def ready() -> JSONResponse:
        """Readiness probe - has bootstrap completed successfully?"""
        signal = app.state.readiness
        if signal is None or signal.succeeded:
            return JSONResponse(
                status_code=200,
                content={"status": "ready", "stage": BootstrapStage.READY.value},
            )
        content: Dict[str, Any] = {"status": "not_ready", "stage": signal.stage.value}
        if signal.cause is not None:
            content["cause"] = str(signal.cause)
        return JSONResponse(status_code=503, content=content)

    return app


class HttpListener:
    """
    Binds the HTTP socket during bootstrap and serves the app with uvicorn later.

    `start()` only binds; nothing is accepted or routed until `serve()` runs.
    """

    def __init__(
        self,
        app: FastAPI,
        host: str,
        port: int,
        log_level: str = "info",
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._log_level = log_level.lower()
        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None

    @property
    def bound_port(self) -> Optional[int]:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    async def start(self) -> None:
        if self._socket is not None:
            raise ListenerFailure("HTTP listener already started")
        try:
            self._socket = socket.create_server((self.host, self.port))
        except OSError as exc:
            raise ListenerFailure(f"Could not bind {self.host}:{self.port}", exc) from exc
        log.info(
            "HTTP listener bound",
            extra={"host": self.host, "port": self.bound_port},
        )

    async def serve(self) -> None:
        """Accept and route requests until shutdown is requested."""
        if self._socket is None:
            raise ListenerFailure("HTTP listener was not started")
        config = uvicorn.Config(
            self.app,
            log_config=None,
            log_level=self._log_level,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve(sockets=[self._socket])
        finally:
            self.close()

    def request_shutdown(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    def close(self) -> None:
        if self._socket is not None:
            sock, self._socket = self._socket, None
            sock.close()


__all__ = [
    "COLLECTION_PATH",
    "HttpListener",
    "create_app",
]
