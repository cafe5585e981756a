"""Failure types raised by the backup and restore engine.

Every failure is non-retryable from the engine's point of view.  The
``kind`` attribute is the stable name reported to callers and audit
events.
"""

from typing import Any


class SnapshotError(Exception):
    """Base class for all backup/restore failures."""

    kind = "SnapshotError"


class MalformedInput(SnapshotError):
    """Snapshot text is not parseable."""

    kind = "MalformedInput"


class MissingPayload(SnapshotError):
    """Neither the envelope nor the legacy bare-payload shape matches."""

    kind = "MissingPayload"


class SchemaViolation(SnapshotError):
    """A present category fails field-level validation."""

    kind = "SchemaViolation"

    def __init__(self, category: str, field: str, message: str) -> None:
        super().__init__(f"{category}.{field}: {message}")
        self.category = category
        self.field = field


class DanglingReference(SnapshotError):
    """A referenced record does not exist in the target store."""

    kind = "DanglingReference"

    def __init__(self, category: str, field: str, missing: list[Any]) -> None:
        shown = ", ".join(str(m) for m in missing[:10])
        if len(missing) > 10:
            shown += f", ... ({len(missing)} total)"
        super().__init__(f"{category}.{field} references missing records: {shown}")
        self.category = category
        self.field = field
        self.missing = list(missing)


class TransactionFailure(SnapshotError):
    """The store rejected a write; the underlying error is ``__cause__``."""

    kind = "TransactionFailure"


class BackupFailed(SnapshotError):
    """A read failed while serializing; no partial snapshot is returned."""

    kind = "BackupFailed"
