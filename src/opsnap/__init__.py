"""opsnap: backup, restore and first-boot seeding for an operations tracker.

Serializes the tracker's data into versioned snapshot files and restores
them atomically, over an async dict-based database adapter.

Usage:
    from opsnap import get_adapter, Scope, backup_snapshot, restore_snapshot
    from opsnap import ensure_initialized, JsonTaxonomyProvider
    from opsnap import load_config, AppConfig
"""

__version__ = "0.1.0"

# Adapters
from opsnap.adapters.base import DatabaseClient
from opsnap.adapters.postgres import AsyncPostgresAdapter

# Config
from opsnap.config.loader import load_config
from opsnap.config.models import AppConfig, DatabaseProfile

# Factory
from opsnap.factory import ProfileNotFoundError, connect, get_adapter, resolve_url

# Snapshot engine
from opsnap.snapshot import (
    RestoreSummary,
    Scope,
    SnapshotError,
    backup_snapshot,
    clear_scope,
    collect_stats,
    parse_snapshot,
    restore_snapshot,
)

# Startup and collaborators
from opsnap.audit import AuditActor, audit_event, log_audit_sink
from opsnap.startup import ensure_initialized
from opsnap.taxonomy import JsonTaxonomyProvider, TaxonomyProvider

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_config",
    "AppConfig",
    "DatabaseProfile",
    # Factory
    "get_adapter",
    "connect",
    "ProfileNotFoundError",
    "resolve_url",
    # Snapshot engine
    "Scope",
    "RestoreSummary",
    "SnapshotError",
    "backup_snapshot",
    "restore_snapshot",
    "parse_snapshot",
    "clear_scope",
    "collect_stats",
    # Startup and collaborators
    "ensure_initialized",
    "TaxonomyProvider",
    "JsonTaxonomyProvider",
    "AuditActor",
    "audit_event",
    "log_audit_sink",
]
