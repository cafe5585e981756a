"""Shared fixtures: an in-memory ``DatabaseClient`` and sample snapshot data.

``FakeDatabase`` mirrors ``src/opsnap/schema.sql`` closely enough for the
engine: foreign keys (RESTRICT or CASCADE on delete), unique keys, serial
operation ids, ``IN`` filters, ``count(*)`` selects and transactions that
roll back on any exception.
"""

import copy
import json
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import pytest


class IntegrityError(Exception):
    """Constraint violation raised by the fake store."""


@dataclass
class FK:
    column: str
    ref_table: str
    ref_column: str = "id"
    cascade: bool = False


@dataclass
class TableSpec:
    columns: dict[str, Any]                     # column -> default
    pk: tuple[str, ...] = ("id",)
    serial: bool = False
    generated_pk: bool = True
    unique: list[tuple[str, ...]] = field(default_factory=list)
    fks: list[FK] = field(default_factory=list)


def _cols(*names: str, **defaults: Any) -> dict[str, Any]:
    cols = {name: None for name in names}
    cols.update(defaults)
    return cols


SCHEMA: dict[str, TableSpec] = {
    "users": TableSpec(
        _cols("id", "email", "name", "last_login", role="VIEWER"),
        unique=[("email",)],
    ),
    "groups": TableSpec(_cols("id", "name", description=""), unique=[("name",)]),
    "user_groups": TableSpec(
        _cols("user_id", "group_id"),
        pk=("user_id", "group_id"),
        generated_pk=False,
        fks=[FK("user_id", "users", cascade=True), FK("group_id", "groups", cascade=True)],
    ),
    "authenticators": TableSpec(
        _cols(
            "id", "credential_id", "user_id", "provider_account_id", "credential_public_key",
            "counter", "credential_device_type", "credential_backed_up", "transports",
        ),
        unique=[("credential_id",)],
        fks=[FK("user_id", "users", cascade=True)],
    ),
    "mitre_tactics": TableSpec(_cols("id", "name", "url", description=""), generated_pk=False),
    "mitre_techniques": TableSpec(
        _cols("id", "name", "url", "tactic_id", description=""),
        generated_pk=False,
        fks=[FK("tactic_id", "mitre_tactics")],
    ),
    "mitre_sub_techniques": TableSpec(
        _cols("id", "name", "url", "technique_id", description=""),
        generated_pk=False,
        fks=[FK("technique_id", "mitre_techniques")],
    ),
    "threat_actors": TableSpec(_cols("id", "name", "description", top_threat=False)),
    "threat_actor_techniques": TableSpec(
        _cols("threat_actor_id", "mitre_technique_id"),
        pk=("threat_actor_id", "mitre_technique_id"),
        generated_pk=False,
        fks=[FK("threat_actor_id", "threat_actors"), FK("mitre_technique_id", "mitre_techniques")],
    ),
    "targets": TableSpec(
        _cols("id", "name", "description", is_crown_jewel=False), unique=[("name",)]
    ),
    "tags": TableSpec(_cols("id", "name", "description", "color"), unique=[("name",)]),
    "tool_categories": TableSpec(_cols("id", "name", "type")),
    "tools": TableSpec(
        _cols("id", "name", "category_id", "type"), fks=[FK("category_id", "tool_categories")]
    ),
    "log_sources": TableSpec(_cols("id", "name", "description"), unique=[("name",)]),
    "operations": TableSpec(
        _cols(
            "id", "name", "description", "start_date", "end_date", "created_by_id",
            "threat_actor_id", status="PLANNING", visibility="EVERYONE",
        ),
        serial=True,
        fks=[FK("created_by_id", "users"), FK("threat_actor_id", "threat_actors")],
    ),
    "operation_tags": TableSpec(
        _cols("operation_id", "tag_id"),
        pk=("operation_id", "tag_id"),
        generated_pk=False,
        fks=[FK("operation_id", "operations", cascade=True), FK("tag_id", "tags", cascade=True)],
    ),
    "operation_targets": TableSpec(
        _cols("operation_id", "target_id"),
        pk=("operation_id", "target_id"),
        generated_pk=False,
        fks=[
            FK("operation_id", "operations", cascade=True),
            FK("target_id", "targets", cascade=True),
        ],
    ),
    "operation_access_groups": TableSpec(
        _cols("operation_id", "group_id"),
        pk=("operation_id", "group_id"),
        generated_pk=False,
        fks=[
            FK("operation_id", "operations", cascade=True),
            FK("group_id", "groups", cascade=True),
        ],
    ),
    "attack_flow_layouts": TableSpec(
        _cols("id", "operation_id", nodes=[], edges=[]),
        unique=[("operation_id",)],
        fks=[FK("operation_id", "operations")],
    ),
    "techniques": TableSpec(
        _cols(
            "id", "description", "start_time", "end_time", "source_ip", "target_system",
            "executed_successfully", "operation_id", "mitre_technique_id",
            "mitre_sub_technique_id", sort_order=0,
        ),
        fks=[
            FK("operation_id", "operations"),
            FK("mitre_technique_id", "mitre_techniques"),
            FK("mitre_sub_technique_id", "mitre_sub_techniques"),
        ],
    ),
    "technique_tools": TableSpec(
        _cols("technique_id", "tool_id"),
        pk=("technique_id", "tool_id"),
        generated_pk=False,
        fks=[FK("technique_id", "techniques", cascade=True), FK("tool_id", "tools", cascade=True)],
    ),
    "technique_targets": TableSpec(
        _cols("technique_id", "target_id", was_compromised=False),
        pk=("technique_id", "target_id"),
        generated_pk=False,
        fks=[
            FK("technique_id", "techniques", cascade=True),
            FK("target_id", "targets", cascade=True),
        ],
    ),
    "outcomes": TableSpec(
        _cols(
            "id", "type", "status", "detection_time", "notes", "screenshot_url", "log_data",
            "technique_id",
        ),
        fks=[FK("technique_id", "techniques")],
    ),
    "outcome_tools": TableSpec(
        _cols("outcome_id", "tool_id"),
        pk=("outcome_id", "tool_id"),
        generated_pk=False,
        fks=[FK("outcome_id", "outcomes", cascade=True), FK("tool_id", "tools", cascade=True)],
    ),
    "outcome_log_sources": TableSpec(
        _cols("outcome_id", "log_source_id"),
        pk=("outcome_id", "log_source_id"),
        generated_pk=False,
        fks=[
            FK("outcome_id", "outcomes", cascade=True),
            FK("log_source_id", "log_sources", cascade=True),
        ],
    ),
}

_COUNT = re.compile(r"^\s*count\(\*\)\s+as\s+(\w+)\s*$", re.IGNORECASE)


def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    for key, value in (filters or {}).items():
        if isinstance(value, (list, tuple, set, frozenset)):
            if row.get(key) not in value:
                return False
        elif row.get(key) != value:
            return False
    return True


class FakeDatabase:
    """In-memory ``DatabaseClient`` with PostgreSQL-like constraint checks."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in SCHEMA}
        self.serial = 0
        self.executed: list[str] = []
        self.fail_inserts_into: set[str] = set()
        self.fail_selects_from: set[str] = set()
        self.closed = False
        self.transactions = 0

    # ------------------------------------------------------------------
    # DatabaseClient
    # ------------------------------------------------------------------

    async def select(self, table, columns, filters=None, order_by=None):
        if table in self.fail_selects_from:
            raise ConnectionError(f"read from {table} failed")
        rows = [r for r in self.tables[table] if _matches(r, filters)]

        count = _COUNT.match(columns)
        if count:
            return [{count.group(1): len(rows)}]

        if order_by:
            keys = [k.strip() for k in order_by.split(",")]
            rows = sorted(
                rows, key=lambda r: tuple((r.get(k) is None, r.get(k)) for k in keys)
            )

        if columns.strip() == "*":
            return [copy.deepcopy(r) for r in rows]
        names = [c.strip() for c in columns.split(",")]
        return [{n: copy.deepcopy(r[n]) for n in names} for r in rows]

    async def insert(self, table, data):
        if table in self.fail_inserts_into:
            raise IntegrityError(f"insert into {table} rejected")
        spec = SCHEMA[table]
        unknown = set(data) - set(spec.columns)
        if unknown:
            raise IntegrityError(f"{table}: unknown columns {sorted(unknown)}")

        row = {col: copy.deepcopy(default) for col, default in spec.columns.items()}
        row.update({k: copy.deepcopy(v) for k, v in data.items() if v is not None or k not in spec.pk})
        if spec.pk == ("id",) and row.get("id") is None:
            if spec.serial:
                self.serial += 1
                row["id"] = self.serial
            elif spec.generated_pk:
                row["id"] = str(uuid.uuid4())
            else:
                raise IntegrityError(f"{table}.id is required")
        if spec.serial:
            self.serial = max(self.serial, row["id"])

        self._check_row(table, row)
        self.tables[table].append(row)
        return copy.deepcopy(row)

    async def insert_many(self, table, rows):
        for row in rows:
            await self.insert(table, row)
        return len(rows)

    async def update(self, table, data, filters):
        matched = [r for r in self.tables[table] if _matches(r, filters)]
        if not matched:
            raise ValueError(f"No rows matched filters: {filters}")
        for row in matched:
            candidate = {**row, **copy.deepcopy(data)}
            self._check_row(table, candidate, ignore=row)
            row.update(copy.deepcopy(data))
        return copy.deepcopy(matched[0])

    async def delete(self, table, filters=None):
        doomed = [r for r in self.tables[table] if _matches(r, filters)]
        self._delete_rows(table, doomed)

    async def execute(self, sql, params=None):
        self.executed.append(sql)

    @asynccontextmanager
    async def transaction(self):
        saved = (copy.deepcopy(self.tables), self.serial)
        self.transactions += 1
        try:
            yield self
        except BaseException:
            self.tables, self.serial = saved
            raise

    async def close(self):
        self.closed = True

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self.tables[table])

    def ids(self, table: str) -> set[Any]:
        return {r["id"] for r in self.tables[table]}

    def dump(self) -> str:
        return json.dumps(self.tables, sort_keys=True, default=str)

    def counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}

    # ------------------------------------------------------------------
    # Constraints
    # ------------------------------------------------------------------

    def _check_row(self, table: str, row: dict[str, Any], ignore: dict | None = None) -> None:
        spec = SCHEMA[table]
        others = [r for r in self.tables[table] if r is not ignore]
        for key in [spec.pk, *spec.unique]:
            value = tuple(row.get(k) for k in key)
            if any(tuple(o.get(k) for k in key) == value for o in others):
                raise IntegrityError(f"duplicate key {table}{key}={value}")
        for fk in spec.fks:
            value = row.get(fk.column)
            if value is None:
                continue
            if not any(r.get(fk.ref_column) == value for r in self.tables[fk.ref_table]):
                raise IntegrityError(
                    f"{table}.{fk.column}={value!r} violates foreign key to {fk.ref_table}"
                )

    def _delete_rows(self, table: str, doomed: list[dict[str, Any]]) -> None:
        if not doomed:
            return
        doomed_ids = [id(r) for r in doomed]
        for child_table, spec in SCHEMA.items():
            for fk in spec.fks:
                if fk.ref_table != table:
                    continue
                values = {r.get(fk.ref_column) for r in doomed}
                children = [r for r in self.tables[child_table] if r.get(fk.column) in values]
                if not children:
                    continue
                if not fk.cascade:
                    raise IntegrityError(
                        f"delete from {table} violates foreign key from {child_table}.{fk.column}"
                    )
                self._delete_rows(child_table, children)
        self.tables[table] = [r for r in self.tables[table] if id(r) not in doomed_ids]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
async def accounts_db(db: FakeDatabase) -> FakeDatabase:
    """Store holding the account and group that sample operations reference."""
    await db.insert("users", {"id": "user-1", "email": "alice@example.com", "name": "Alice", "role": "ADMIN"})
    await db.insert("groups", {"id": "grp-1", "name": "Red Team", "description": "Operators"})
    return db


@pytest.fixture
def taxonomy_payload() -> dict[str, list[dict]]:
    return {
        "mitreTactics": [
            {"id": "TA0001", "name": "Initial Access", "description": "Get in"},
            {"id": "TA0002", "name": "Execution", "description": "Run code"},
        ],
        "mitreTechniques": [
            {"id": "T1566", "name": "Phishing", "description": "Send mail", "tacticId": "TA0001"},
            {"id": "T1059", "name": "Command Interpreter", "description": "", "tacticId": "TA0002"},
        ],
        "mitreSubTechniques": [
            {
                "id": "T1566.001",
                "name": "Spearphishing Attachment",
                "description": "",
                "techniqueId": "T1566",
            },
        ],
    }


@pytest.fixture
def operations_payload() -> dict[str, list[dict]]:
    return {
        "threatActors": [
            {"id": "ta-1", "name": "Actor X", "description": "APT", "topThreat": True},
        ],
        "threatActorTechniqueLinks": [
            {"threatActorId": "ta-1", "mitreTechniqueId": "T1566"},
        ],
        "targets": [
            {"id": "tgt-1", "name": "Domain Controller", "description": "DC", "isCrownJewel": True},
        ],
        "tags": [
            {"id": "tag-1", "name": "Stealth", "description": "Quiet", "color": "#333333"},
        ],
        "toolCategories": [{"id": "tc-1", "name": "C2", "type": "OFFENSIVE"}],
        "tools": [
            {"id": "tool-1", "name": "Cobalt Strike", "categoryId": "tc-1", "type": "OFFENSIVE"},
        ],
        "logSources": [{"id": "ls-1", "name": "Sysmon", "description": "Endpoint telemetry"}],
        "operations": [
            {
                "id": 1,
                "name": "Op1",
                "description": "First operation",
                "status": "ACTIVE",
                "startDate": "2024-03-01T09:00:00+00:00",
                "createdById": "user-1",
                "threatActorId": "ta-1",
                "visibility": "GROUPS_ONLY",
                "tags": [{"id": "tag-1"}],
                "targets": [{"id": "tgt-1"}],
                "accessGroups": [{"groupId": "grp-1"}],
            },
        ],
        "attackFlowLayouts": [
            {"id": "afl-1", "operationId": 1, "nodes": [{"id": "n1"}], "edges": []},
        ],
        "techniques": [
            {
                "id": "tech-1",
                "description": "Send phish",
                "sortOrder": 0,
                "operationId": 1,
                "mitreTechniqueId": "T1566",
                "mitreSubTechniqueId": "T1566.001",
                "tools": [{"id": "tool-1"}],
                "targets": [{"targetId": "tgt-1", "wasCompromised": True}],
            },
        ],
        "outcomes": [
            {
                "id": "out-1",
                "type": "DETECTION",
                "status": "DETECTED",
                "techniqueId": "tech-1",
                "tools": [{"id": "tool-1"}],
                "logSources": [{"id": "ls-1"}],
            },
        ],
    }


@pytest.fixture
def accounts_payload() -> dict[str, list[dict]]:
    return {
        "users": [
            {"id": "user-1", "email": "alice@example.com", "name": "Alice", "role": "ADMIN"},
        ],
        "authenticators": [
            {
                "id": "auth-1",
                "credentialID": "cred-1",
                "userId": "user-1",
                "providerAccountId": "pa-1",
                "credentialPublicKey": "cHVibGlj",
                "counter": 3,
                "credentialDeviceType": "singleDevice",
                "credentialBackedUp": False,
                "transports": "usb",
            },
        ],
        "groups": [{"id": "grp-1", "name": "Red Team", "description": "Operators"}],
        "userGroups": [{"userId": "user-1", "groupId": "grp-1"}],
    }


@pytest.fixture
def full_payload(taxonomy_payload, operations_payload, accounts_payload) -> dict[str, list[dict]]:
    return {**taxonomy_payload, **operations_payload, **accounts_payload}


@pytest.fixture
def envelope_text(full_payload) -> str:
    return json.dumps({
        "formatVersion": "2.0",
        "generatedAt": "2024-03-02T10:00:00+00:00",
        "payload": full_payload,
    })
