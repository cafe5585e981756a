"""Snapshot engine models: scope, category declarations and results.

A ``CategoryDef`` declares one snapshot category: the table it lives in,
the foreign keys and many-to-many associations it carries, and the
strategy the restore applies to it.  The dependency table in
``opsnap.snapshot.order`` is a tuple of these declarations; nothing else
in the engine hardcodes table names or relationships.

Usage:
    from opsnap.snapshot.models import Category, CategoryDef, ForeignKey, Scope

    tools = CategoryDef(
        name=Category.TOOLS,
        table="tools",
        section=Section.OPERATIONS,
        refs=[ForeignKey(category=Category.TOOL_CATEGORIES, field="category_id")],
    )
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class Section(str, Enum):
    """Scope section a category belongs to."""

    TAXONOMY = "taxonomy"
    OPERATIONS = "operations"
    ACCOUNTS = "accounts"


class Category(str, Enum):
    """Snapshot categories; values are the payload keys on the wire."""

    MITRE_TACTICS = "mitreTactics"
    MITRE_TECHNIQUES = "mitreTechniques"
    MITRE_SUB_TECHNIQUES = "mitreSubTechniques"
    THREAT_ACTORS = "threatActors"
    THREAT_ACTOR_TECHNIQUE_LINKS = "threatActorTechniqueLinks"
    TARGETS = "targets"
    TAGS = "tags"
    TOOL_CATEGORIES = "toolCategories"
    TOOLS = "tools"
    LOG_SOURCES = "logSources"
    OPERATIONS = "operations"
    ATTACK_FLOW_LAYOUTS = "attackFlowLayouts"
    TECHNIQUES = "techniques"
    OUTCOMES = "outcomes"
    USERS = "users"
    AUTHENTICATORS = "authenticators"
    GROUPS = "groups"
    USER_GROUPS = "userGroups"


Strategy = Literal["create", "upsert", "replace"]


class Scope(BaseModel):
    """Caller-selected sections a backup or restore touches."""

    include_taxonomy: bool = True
    include_operations: bool = True
    include_accounts: bool = False

    @classmethod
    def full(cls) -> "Scope":
        return cls(include_taxonomy=True, include_operations=True, include_accounts=True)

    def sections(self) -> set[Section]:
        selected: set[Section] = set()
        if self.include_taxonomy:
            selected.add(Section.TAXONOMY)
        if self.include_operations:
            selected.add(Section.OPERATIONS)
        if self.include_accounts:
            selected.add(Section.ACCOUNTS)
        return selected

    def includes(self, section: Section) -> bool:
        return section in self.sections()

    def is_empty(self) -> bool:
        return not self.sections()


class ForeignKey(BaseModel):
    """Reference from a category's column to another category's primary key."""

    category: Category      # referenced category
    field: str              # FK column in this table
    on_missing: Literal["fail", "skip"] = "fail"  # skip the record instead of failing


class Association(BaseModel):
    """Many-to-many join embedded in a record as a list of references."""

    table: str                      # join table
    record_field: str               # record attribute holding the list
    owner_field: str                # join column pointing at the owning record
    target_field: str               # join column pointing at the associated record
    target: Category                # category of the associated record
    item_field: str = "id"          # attribute of each list item carrying the target id
    extra_fields: list[str] = Field(default_factory=list)  # extra join columns copied from items


class CategoryDef(BaseModel):
    """Declaration of one snapshot category."""

    name: Category
    table: str
    section: Section
    strategy: Strategy = "create"
    pk: str | None = "id"                                   # None for pure link tables
    natural_key: list[str] = Field(default_factory=list)   # upsert match columns
    match_on_pk: bool = False                               # upsert tries the pk before the natural key
    refs: list[ForeignKey] = Field(default_factory=list)
    associations: list[Association] = Field(default_factory=list)
    insert_defaults: dict[str, Any] = Field(default_factory=dict)  # applied when a value is None
    order_by: str | None = None

    @property
    def tables(self) -> list[str]:
        """Join tables first, then the category's own table (deletion order)."""
        return [a.table for a in self.associations] + [self.table]


class RestoreState(str, Enum):
    """States of one restore invocation."""

    VALIDATING = "validating"
    PREFLIGHT_CHECKING = "preflight_checking"
    CLEARING = "clearing"
    CREATING = "creating"
    COMMITTED = "committed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({RestoreState.COMMITTED, RestoreState.ABORTED})


class CategoryCounts(BaseModel):
    """Per-category restore counters."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0


class RestoreSummary(BaseModel):
    """Outcome of a committed restore."""

    state: RestoreState = RestoreState.VALIDATING
    shape: Literal["envelope", "legacy"] | None = None
    format_version: str | None = None
    clear_before: bool = False
    scope: Scope = Field(default_factory=Scope)
    counts: dict[str, CategoryCounts] = Field(default_factory=dict)

    def for_category(self, category: Category) -> CategoryCounts:
        return self.counts.setdefault(category.value, CategoryCounts())
