"""Restore orchestrator.

A restore moves through ``validating -> preflight_checking -> (clearing)
-> creating -> committed``; the first failure in any of them ends it in
``aborted``.  Validation and the access-group preflight only read, so a
snapshot that fails either leaves the store untouched.  Clearing and
creation share one transaction.

Creation walks the dependency table parents-first and handles each
category as a batch:

1. Foreign keys pointing at accounts or groups are rewritten through the
   id maps built by earlier upserts.
2. Every referenced id is checked with one existence query per target
   category.  A miss raises ``DanglingReference`` unless the key is
   declared ``on_missing="skip"`` (group memberships).
3. The category's strategy runs: ``create`` inserts, ``upsert`` matches on
   the natural key, ``replace`` empties the table first.
4. Join rows for embedded associations are inserted.

Concurrent restores against the same scope are not supported and may
race; callers serialize them.

Usage:
    from opsnap.snapshot.restore import restore_snapshot
    from opsnap.snapshot.models import Scope

    summary = await restore_snapshot(adapter, text, Scope.full(), clear_before=True)
"""

import logging
from collections import defaultdict
from typing import Any

from pydantic.alias_generators import to_camel

from opsnap.adapters.base import DatabaseClient
from opsnap.audit import AuditActor, AuditSink, audit_event
from opsnap.snapshot.clear import clear_categories
from opsnap.snapshot.errors import DanglingReference, SnapshotError, TransactionFailure
from opsnap.snapshot.models import (
    TERMINAL_STATES,
    Association,
    Category,
    CategoryCounts,
    CategoryDef,
    RestoreState,
    RestoreSummary,
    Scope,
    Section,
)
from opsnap.snapshot.order import CATEGORY_DEFS, creation_order
from opsnap.snapshot.records import Payload, Record
from opsnap.snapshot.validator import parse_snapshot, validate_payload
from opsnap.taxonomy import TaxonomyProvider

logger = logging.getLogger(__name__)

_TAXONOMY = (Category.MITRE_TACTICS, Category.MITRE_TECHNIQUES, Category.MITRE_SUB_TECHNIQUES)


class _RestoreRun:
    """State tracking for one restore invocation."""

    def __init__(self, scope: Scope, clear_before: bool) -> None:
        self.summary = RestoreSummary(scope=scope, clear_before=clear_before)

    @property
    def state(self) -> RestoreState:
        return self.summary.state

    def advance(self, state: RestoreState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Restore already {self.state.value}")
        logger.debug("Restore %s -> %s", self.state.value, state.value)
        self.summary.state = state


async def restore_snapshot(
    adapter: DatabaseClient,
    snapshot_text: str | bytes,
    scope: Scope | None = None,
    clear_before: bool = False,
    taxonomy_provider: TaxonomyProvider | None = None,
    audit: AuditSink | None = None,
    actor: AuditActor | None = None,
) -> RestoreSummary:
    """Restore a snapshot into the store, all or nothing.

    Args:
        adapter: Database adapter implementing ``DatabaseClient`` Protocol.
        snapshot_text: Snapshot JSON in the envelope or legacy bare shape.
        scope: Sections to restore.  Categories outside it are ignored even
            when the payload carries them.
        clear_before: Delete every row in ``scope`` before recreating.
        taxonomy_provider: Baseline taxonomy used when the taxonomy section
            is cleared and the payload carries none.
        audit: Sink receiving one event for this invocation.
        actor: Caller identity recorded in the audit event.

    Returns:
        Summary with per-category counts and state ``committed``.

    Raises:
        ValueError: If ``scope`` selects nothing.
        MalformedInput, MissingPayload, SchemaViolation: Invalid snapshot;
            nothing was touched.
        DanglingReference: A reference does not resolve; any open
            transaction was rolled back.
        TransactionFailure: The store rejected a write; rolled back, with
            the store error as ``__cause__``.
    """
    scope = scope or Scope()
    if scope.is_empty():
        raise ValueError("Select at least one section to restore")

    run = _RestoreRun(scope, clear_before)
    try:
        parsed = parse_snapshot(snapshot_text)
        run.summary.shape = parsed.shape
        run.summary.format_version = getattr(parsed, "format_version", None)

        payload = _scoped_payload(parsed.payload, scope)
        if clear_before and scope.includes(Section.TAXONOMY) and taxonomy_provider is not None:
            payload = _with_baseline_taxonomy(payload, taxonomy_provider)

        run.advance(RestoreState.PREFLIGHT_CHECKING)
        await _check_access_groups(adapter, payload, scope)

        try:
            async with adapter.transaction() as tx:
                if clear_before:
                    run.advance(RestoreState.CLEARING)
                    deleted = await clear_categories(tx, scope)
                    for category, count in deleted.items():
                        run.summary.for_category(category).deleted += count

                run.advance(RestoreState.CREATING)
                await _Creator(tx, run.summary).create_all(payload, scope)
        except SnapshotError:
            raise
        except Exception as e:
            raise TransactionFailure(f"Restore transaction failed: {e}") from e
    except Exception as e:
        run.summary.state = RestoreState.ABORTED
        kind = getattr(e, "kind", type(e).__name__)
        logger.error(
            "Restore error",
            extra={"event": "database.restore_failed", "kind": kind, "error": str(e)},
        )
        if audit is not None:
            audit(audit_event(
                "database.restore",
                actor,
                scope=scope.model_dump(),
                clearBefore=clear_before,
                success=False,
                errorKind=kind,
            ))
        raise

    run.advance(RestoreState.COMMITTED)
    logger.info(
        "Restore committed",
        extra={"event": "database.restored", "scope": scope.model_dump()},
    )
    if audit is not None:
        audit(audit_event(
            "database.restore",
            actor,
            scope=scope.model_dump(),
            clearBefore=clear_before,
            success=True,
            counts={k: v.model_dump() for k, v in run.summary.counts.items()},
        ))
    return run.summary


def _scoped_payload(payload: Payload, scope: Scope) -> Payload:
    """Drop categories outside ``scope``."""
    sections = scope.sections()
    return {
        category: records
        for category, records in payload.items()
        if CATEGORY_DEFS[category].section in sections
    }


def _with_baseline_taxonomy(payload: Payload, provider: TaxonomyProvider) -> Payload:
    """Fill in the provider's taxonomy when the payload carries none."""
    if any(category in payload for category in _TAXONOMY):
        return payload
    baseline = validate_payload({
        Category.MITRE_TACTICS.value: provider.tactics(),
        Category.MITRE_TECHNIQUES.value: provider.techniques(),
        Category.MITRE_SUB_TECHNIQUES.value: provider.sub_techniques(),
    })
    logger.info("Restoring baseline taxonomy %s", provider.metadata())
    return {**payload, **baseline}


async def _check_access_groups(adapter: DatabaseClient, payload: Payload, scope: Scope) -> None:
    """Fail before any mutation if an operation names an unknown access group.

    Groups carried by the payload count as present when the accounts
    section is restored in the same call.
    """
    referenced = {
        ref.group_id
        for operation in payload.get(Category.OPERATIONS, [])
        for ref in operation.access_groups
    }
    if not referenced:
        return

    carried: set[str] = set()
    if scope.includes(Section.ACCOUNTS):
        carried = {g.id for g in payload.get(Category.GROUPS, []) if g.id}

    unresolved = referenced - carried
    if not unresolved:
        return

    groups = CATEGORY_DEFS[Category.GROUPS]
    rows = await adapter.select(groups.table, groups.pk, filters={groups.pk: sorted(unresolved)})
    missing = unresolved - {r[groups.pk] for r in rows}
    if missing:
        raise DanglingReference(Category.OPERATIONS.value, "accessGroups", sorted(missing))


class _Creator:
    """Creates categories in dependency order inside one transaction."""

    def __init__(self, client: DatabaseClient, summary: RestoreSummary) -> None:
        self._client = client
        self._summary = summary
        # category -> snapshot id -> store id, filled by upserts and creates
        self._id_maps: dict[Category, dict[Any, Any]] = defaultdict(dict)

    async def create_all(self, payload: Payload, scope: Scope) -> None:
        for category_def in creation_order(scope):
            records = payload.get(category_def.name)
            if records is None:
                continue
            await self._restore_category(category_def, records)

    async def _restore_category(self, category_def: CategoryDef, records: list[Record]) -> None:
        counts = self._summary.for_category(category_def.name)

        if category_def.strategy == "replace":
            counts.deleted += await self._count(category_def.table)
            for table in category_def.tables:
                await self._client.delete(table)

        rows, old_pks = self._prepare_rows(category_def, records)
        keep = await self._resolve_refs(category_def, rows)
        links = await self._resolve_associations(category_def, records)

        pks: list[Any] = [None] * len(rows)
        if category_def.strategy == "upsert":
            for i in keep:
                pks[i] = await self._upsert(category_def, rows[i], counts)
        else:
            await self._create(category_def, rows, keep, pks)
            counts.inserted += len(keep)
        counts.skipped += len(rows) - len(keep)

        for i in keep:
            if old_pks[i] is not None and pks[i] is not None:
                self._id_maps[category_def.name][old_pks[i]] = pks[i]

        for assoc, per_record in links:
            join_rows = [
                {assoc.owner_field: pks[i], **item}
                for i in keep
                for item in per_record[i]
            ]
            await self._client.insert_many(assoc.table, join_rows)

        logger.debug(
            "Restored %s: %s", category_def.name.value, counts.model_dump()
        )

    def _prepare_rows(
        self, category_def: CategoryDef, records: list[Record]
    ) -> tuple[list[dict[str, Any]], list[Any]]:
        """Column dicts for each record, with account/group keys remapped."""
        exclude = {a.record_field for a in category_def.associations}
        pk = category_def.pk
        rows: list[dict[str, Any]] = []
        old_pks: list[Any] = []
        for record in records:
            row = record.model_dump(exclude=exclude)
            old_pks.append(row.get(pk) if pk else None)
            if pk and row.get(pk) is None:
                # Let the store generate it
                row.pop(pk, None)
            for ref in category_def.refs:
                value = row.get(ref.field)
                if value is not None:
                    row[ref.field] = self._remap(ref.category, value)
            rows.append(row)
        return rows, old_pks

    async def _resolve_refs(
        self, category_def: CategoryDef, rows: list[dict[str, Any]]
    ) -> list[int]:
        """Indexes of rows whose foreign keys all resolve."""
        keep = list(range(len(rows)))
        for ref in category_def.refs:
            values = {rows[i][ref.field] for i in keep if rows[i].get(ref.field) is not None}
            missing = values - await self._existing(ref.category, values)
            if not missing:
                continue
            if ref.on_missing == "skip":
                keep = [i for i in keep if rows[i].get(ref.field) not in missing]
                logger.debug(
                    "Skipping %s rows with unknown %s: %s",
                    category_def.name.value, ref.field, sorted(missing, key=str),
                )
            else:
                raise DanglingReference(
                    category_def.name.value, to_camel(ref.field), sorted(missing, key=str)
                )
        return keep

    async def _resolve_associations(
        self, category_def: CategoryDef, records: list[Record]
    ) -> list[tuple[Association, list[list[dict[str, Any]]]]]:
        """Join rows (minus the owner column) per association, per record."""
        links = []
        for assoc in category_def.associations:
            per_record: list[list[dict[str, Any]]] = []
            for record in records:
                items: dict[Any, dict[str, Any]] = {}
                for item in getattr(record, assoc.record_field):
                    target_id = self._remap(assoc.target, getattr(item, assoc.item_field))
                    join = {assoc.target_field: target_id}
                    for extra in assoc.extra_fields:
                        join[extra] = getattr(item, extra)
                    items[target_id] = join
                per_record.append(list(items.values()))

            values = {j[assoc.target_field] for items in per_record for j in items}
            missing = values - await self._existing(assoc.target, values)
            if missing:
                raise DanglingReference(
                    category_def.name.value,
                    to_camel(assoc.record_field),
                    sorted(missing, key=str),
                )
            links.append((assoc, per_record))
        return links

    async def _create(
        self,
        category_def: CategoryDef,
        rows: list[dict[str, Any]],
        keep: list[int],
        pks: list[Any],
    ) -> None:
        pk = category_def.pk
        batch = [
            self._with_defaults(category_def, rows[i])
            for i in keep
            if pk is None or pk in rows[i]
        ]
        await self._client.insert_many(category_def.table, batch)

        for i in keep:
            if pk is None:
                continue
            if pk in rows[i]:
                pks[i] = rows[i][pk]
            else:
                created = await self._client.insert(
                    category_def.table, self._with_defaults(category_def, rows[i])
                )
                pks[i] = created[pk]

    async def _upsert(
        self, category_def: CategoryDef, row: dict[str, Any], counts: CategoryCounts
    ) -> Any:
        """Update the matching row when present, insert otherwise; return the store pk.

        Categories with ``match_on_pk`` look the snapshot id up first, so a
        row renamed since the snapshot is updated back in place.  Otherwise
        the natural key decides.  A new row whose snapshot id is held by
        some other row is inserted under a store-generated id, and the id
        map sends later references to it.
        """
        pk = category_def.pk
        columns = pk or ", ".join(category_def.natural_key)

        key: dict[str, Any] = {}
        existing: list[dict[str, Any]] = []
        if category_def.match_on_pk and row.get(pk) is not None:
            key = {pk: row[pk]}
            existing = await self._client.select(category_def.table, columns, filters=key)
        if not existing:
            key = {field: row[field] for field in category_def.natural_key}
            existing = await self._client.select(category_def.table, columns, filters=key)

        if existing:
            changes = {
                k: v for k, v in row.items()
                if k != pk and k not in key and v is not None
            }
            if changes:
                await self._client.update(category_def.table, changes, filters=key)
                counts.updated += 1
            else:
                counts.skipped += 1
            return existing[0][pk] if pk else None

        if pk and row.get(pk) is not None:
            taken = await self._client.select(category_def.table, pk, filters={pk: row[pk]})
            if taken:
                logger.debug(
                    "%s id %s already taken, inserting under a new id",
                    category_def.name.value, row[pk],
                )
                row = {k: v for k, v in row.items() if k != pk}

        created = await self._client.insert(category_def.table, self._with_defaults(category_def, row))
        counts.inserted += 1
        return created[pk] if pk else None

    async def _existing(self, category: Category, values: set[Any]) -> set[Any]:
        """The subset of ``values`` present as primary keys of ``category``."""
        if not values:
            return set()
        target = CATEGORY_DEFS[category]
        rows = await self._client.select(
            target.table, target.pk, filters={target.pk: sorted(values, key=str)}
        )
        return {r[target.pk] for r in rows}

    async def _count(self, table: str) -> int:
        rows = await self._client.select(table, "count(*) as cnt")
        return rows[0]["cnt"] if rows else 0

    def _remap(self, category: Category, value: Any) -> Any:
        return self._id_maps[category].get(value, value)

    @staticmethod
    def _with_defaults(category_def: CategoryDef, row: dict[str, Any]) -> dict[str, Any]:
        if not category_def.insert_defaults:
            return row
        merged = dict(row)
        for field, default in category_def.insert_defaults.items():
            if merged.get(field) is None:
                merged[field] = default
        return merged
