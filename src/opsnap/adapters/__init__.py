"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL
implementation used by the snapshot engine.

Usage:
    from opsnap.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from opsnap.adapters.base import DatabaseClient
from opsnap.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
