"""
Whisky API - HTTP CRUD service for a whisky collection.

The service comes up through an ordered bootstrap pipeline before it accepts
traffic:

- acquire a pooled PostgreSQL connection
- create the `whisky` table if it is absent
- seed default records into an empty table
- bind the HTTP listener
- signal readiness

Once ready, HTTP handlers call the resource gateway directly.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from whisky_api.bootstrap import BootstrapOrchestrator, BootstrapStage, ReadinessSignal
from whisky_api.config import Settings, get_settings
from whisky_api.domain import Whisky, WhiskyUpdate
from whisky_api.gateway import WhiskyGateway
from whisky_api.infrastructure import PoolManager
from whisky_api.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Bootstrap
    "BootstrapOrchestrator",
    "BootstrapStage",
    "ReadinessSignal",
    # Store access
    "PoolManager",
    "WhiskyGateway",
    "Whisky",
    "WhiskyUpdate",
    # Logging
    "configure_logging",
    "get_logger",
]
