"""
Error taxonomy for the whisky collection service.

Bootstrap errors abort startup. Request errors are scoped to one call and carry
the HTTP status the API layer answers with.
"""
from __future__ import annotations

from typing import Optional


class WhiskyApiError(Exception):
    """Base class for every error raised by the service."""

    status_code: int = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


# Bootstrap (process-fatal)


class BootstrapError(WhiskyApiError):
    """A bootstrap stage failed; the service must not become ready."""

    stage: str = "unknown"


class ConnectionFailure(BootstrapError):
    stage = "connection"


class SchemaFailure(BootstrapError):
    stage = "schema"


class SeedFailure(BootstrapError):
    stage = "seed"


class ListenerFailure(BootstrapError):
    stage = "listener"


# Request validation (recovered locally)


class InvalidIdentifier(WhiskyApiError):
    status_code = 400


class InvalidPayload(WhiskyApiError):
    status_code = 400


class NotFound(WhiskyApiError):
    status_code = 404


# Store failures during live requests


class StoreError(WhiskyApiError):
    status_code = 500


class StoreReadFailed(StoreError):
    pass


class StoreWriteFailed(StoreError):
    pass


class StoreInvariantViolation(StoreError):
    pass


class StoreTimeout(StoreError):
    status_code = 504


class ServiceNotReady(WhiskyApiError):
    status_code = 503


class ClientDisconnected(WhiskyApiError):
    """The caller went away before its store call finished; the call was cancelled."""

    status_code = 499


__all__ = [
    "WhiskyApiError",
    "BootstrapError",
    "ConnectionFailure",
    "SchemaFailure",
    "SeedFailure",
    "ListenerFailure",
    "InvalidIdentifier",
    "InvalidPayload",
    "NotFound",
    "StoreError",
    "StoreReadFailed",
    "StoreWriteFailed",
    "StoreInvariantViolation",
    "StoreTimeout",
    "ServiceNotReady",
    "ClientDisconnected",
]
