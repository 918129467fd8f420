"""
Infrastructure package for the whisky collection service.

Centralizes database connectivity concerns (DSN, pooling, scoped connections).
Keep this layer focused on I/O and resource management, decoupled from the
gateway and bootstrap logic.
"""

from whisky_api.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    connection_kwargs,
    redacted_dsn,
)

__all__ = [
    "PoolManager",
    "build_dsn",
    "connection_kwargs",
    "redacted_dsn",
]
