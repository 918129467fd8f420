"""
Domain package for the whisky collection service.

Exports the record models, the row mapping, and the error taxonomy.
"""

from whisky_api.domain.errors import (
    BootstrapError,
    ClientDisconnected,
    ConnectionFailure,
    InvalidIdentifier,
    InvalidPayload,
    ListenerFailure,
    NotFound,
    SchemaFailure,
    SeedFailure,
    ServiceNotReady,
    StoreError,
    StoreInvariantViolation,
    StoreReadFailed,
    StoreTimeout,
    StoreWriteFailed,
    WhiskyApiError,
)
from whisky_api.domain.models import Whisky, WhiskyUpdate, record_from_row

__all__ = [
    "Whisky",
    "WhiskyUpdate",
    "record_from_row",
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
