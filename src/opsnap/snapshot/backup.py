"""Backup serializer.

Reads every category inside the caller's scope and assembles a versioned
snapshot envelope.  Many-to-many joins owned by a record are embedded in
it as reference lists; the actor/technique join is its own flat category
so it can be replayed after both sides exist.

Reads are independent per category and not isolated from concurrent
writers, so a snapshot taken under load may show slight cross-category
skew.

Usage:
    from opsnap.snapshot.backup import backup_snapshot, save_snapshot
    from opsnap.snapshot.models import Scope

    text = await backup_snapshot(adapter, Scope(include_accounts=True))
    path = save_snapshot(text)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from opsnap.adapters.base import DatabaseClient
from opsnap.audit import AuditActor, AuditSink, audit_event
from opsnap.snapshot.errors import BackupFailed
from opsnap.snapshot.models import CategoryDef, Scope
from opsnap.snapshot.order import DEPENDENCY_ORDER, creation_order
from opsnap.snapshot.records import RECORD_MODELS

logger = logging.getLogger(__name__)

FORMAT_VERSION = "2.0"


async def backup_snapshot(
    adapter: DatabaseClient,
    scope: Scope | None = None,
    format_version: str = FORMAT_VERSION,
    audit: AuditSink | None = None,
    actor: AuditActor | None = None,
) -> str:
    """Serialize the selected scope into snapshot text.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        scope: Sections to include.  Defaults to taxonomy plus operations.
        format_version: Version string written into the envelope.
        audit: Sink receiving one event for this invocation.
        actor: Caller identity recorded in the audit event.

    Returns:
        JSON text of ``{"formatVersion", "generatedAt", "payload"}``.

    Raises:
        BackupFailed: If any read fails.  No partial snapshot is returned.
    """
    scope = scope or Scope()
    payload: dict[str, list[dict[str, Any]]] = {}

    try:
        for category_def in creation_order(scope):
            payload[category_def.name.value] = await _read_category(adapter, category_def)
    except Exception as e:
        logger.error(
            "Failed to create backup",
            extra={"event": "database.backup_failed", "error": str(e)},
        )
        if audit is not None:
            audit(audit_event(
                "database.backup", actor, scope=scope.model_dump(), success=False, errorKind=BackupFailed.kind
            ))
        raise BackupFailed("Failed to create backup") from e

    logger.info(
        "Backup created with %d categories",
        len(payload),
        extra={"event": "database.backup_created", "scope": scope.model_dump()},
    )
    if audit is not None:
        audit(audit_event("database.backup", actor, scope=scope.model_dump(), success=True))

    envelope = {
        "formatVersion": format_version,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }
    return json.dumps(envelope, indent=2)


async def _read_category(
    adapter: DatabaseClient, category_def: CategoryDef
) -> list[dict[str, Any]]:
    """Read one category and fold its join tables into its records."""
    rows = await adapter.select(
        category_def.table,
        columns="*",
        order_by=category_def.order_by or category_def.pk,
    )

    # owner id -> association record_field -> list of items
    embedded: dict[Any, dict[str, list[dict]]] = {}
    for assoc in category_def.associations:
        link_rows = await adapter.select(
            assoc.table,
            columns="*",
            order_by=f"{assoc.owner_field}, {assoc.target_field}",
        )
        for link in link_rows:
            item = {assoc.item_field: link[assoc.target_field]}
            for extra in assoc.extra_fields:
                item[extra] = link.get(extra)
            owner = embedded.setdefault(link[assoc.owner_field], {})
            owner.setdefault(assoc.record_field, []).append(item)

    model = RECORD_MODELS[category_def.name]
    records: list[dict[str, Any]] = []
    for row in rows:
        data = dict(row)
        if category_def.associations:
            data.update(embedded.get(row[category_def.pk], {}))
        record = model.model_validate(data)
        records.append(record.model_dump(mode="json", by_alias=True))
    return records


async def collect_stats(adapter: DatabaseClient) -> dict[str, int]:
    """Row counts for every category, keyed by payload name."""
    counts: dict[str, int] = {}
    for category_def in DEPENDENCY_ORDER:
        rows = await adapter.select(category_def.table, "count(*) as cnt")
        counts[category_def.name.value] = rows[0]["cnt"] if rows else 0
    return counts


def save_snapshot(
    text: str,
    output_path: str | None = None,
    backups_dir: str = "backups",
) -> str:
    """Write snapshot text to disk.

    When ``output_path`` is None, generates a timestamped path under
    ``backups_dir`` (relative to the working directory).

    Returns:
        Path of the written file.
    """
    if output_path is None:
        directory = Path.cwd() / backups_dir
        directory.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H%M%S")
        output_path = str(directory / f"backup-{timestamp}.json")

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return output_path
