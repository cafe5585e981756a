"""Backup and restore engine.

The category hierarchy, its foreign keys and embedded associations are
declared once in ``opsnap.snapshot.order``; backup, clear and restore all
walk that table.

Usage:
    from opsnap.snapshot import Scope, backup_snapshot, restore_snapshot

    text = await backup_snapshot(adapter, Scope.full())
    summary = await restore_snapshot(adapter, text, Scope.full(), clear_before=True)
"""

from opsnap.snapshot.backup import FORMAT_VERSION, backup_snapshot, collect_stats, save_snapshot
from opsnap.snapshot.clear import clear_scope
from opsnap.snapshot.errors import (
    BackupFailed,
    DanglingReference,
    MalformedInput,
    MissingPayload,
    SchemaViolation,
    SnapshotError,
    TransactionFailure,
)
from opsnap.snapshot.models import Category, CategoryCounts, RestoreState, RestoreSummary, Scope, Section
from opsnap.snapshot.order import DEPENDENCY_ORDER, creation_order, deletion_order
from opsnap.snapshot.restore import restore_snapshot
from opsnap.snapshot.validator import parse_snapshot, validate_payload

__all__ = [
    "FORMAT_VERSION",
    "backup_snapshot",
    "collect_stats",
    "save_snapshot",
    "clear_scope",
    "restore_snapshot",
    "parse_snapshot",
    "validate_payload",
    "DEPENDENCY_ORDER",
    "creation_order",
    "deletion_order",
    "Category",
    "CategoryCounts",
    "RestoreState",
    "RestoreSummary",
    "Scope",
    "Section",
    "SnapshotError",
    "MalformedInput",
    "MissingPayload",
    "SchemaViolation",
    "DanglingReference",
    "TransactionFailure",
    "BackupFailed",
]
