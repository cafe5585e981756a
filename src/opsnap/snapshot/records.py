"""Record models for every snapshot category.

Field names are the store's column names (snake_case); aliases are the
camelCase keys used in snapshot files.  Models validate from either
spelling, so the same class reads database rows during backup and
snapshot records during restore.

Fields a record does not declare (``createdAt``, ``updatedAt``, ...) are
ignored.
"""

import json
import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from opsnap.snapshot.models import Category

ToolType = Literal["DEFENSIVE", "OFFENSIVE"]
OperationStatus = Literal["PLANNING", "ACTIVE", "COMPLETED", "CANCELLED"]
Visibility = Literal["EVERYONE", "GROUPS_ONLY"]
OutcomeType = Literal["DETECTION", "PREVENTION", "ATTRIBUTION"]
OutcomeStatus = Literal["NOT_APPLICABLE", "MISSED", "DETECTED", "PREVENTED", "ATTRIBUTED"]
UserRole = Literal["ADMIN", "OPERATOR", "VIEWER"]

# Shape check only; addresses are stored and matched exactly as written
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Record(BaseModel):
    """Base for snapshot records."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================================
# Embedded association items
# ============================================================================


class IdRef(Record):
    id: str


class GroupRef(Record):
    group_id: str


class TargetAssignment(Record):
    target_id: str
    was_compromised: bool = False


# ============================================================================
# Taxonomy
# ============================================================================


class MitreTactic(Record):
    id: str
    name: str
    description: str = ""
    url: str | None = None


class MitreTechnique(Record):
    id: str
    name: str
    description: str = ""
    url: str | None = None
    tactic_id: str


class MitreSubTechnique(Record):
    id: str
    name: str
    description: str = ""
    url: str | None = None
    technique_id: str


# ============================================================================
# Operations data
# ============================================================================


class ThreatActor(Record):
    id: str | None = None
    name: str
    description: str
    top_threat: bool = False


class ThreatActorTechniqueLink(Record):
    threat_actor_id: str
    mitre_technique_id: str


class Target(Record):
    id: str | None = None
    name: str
    description: str
    is_crown_jewel: bool = False


class Tag(Record):
    id: str | None = None
    name: str
    description: str
    color: str | None = None


class ToolCategory(Record):
    id: str | None = None
    name: str
    type: ToolType


class Tool(Record):
    id: str | None = None
    name: str
    category_id: str
    type: ToolType


class LogSource(Record):
    id: str | None = None
    name: str
    description: str


class Operation(Record):
    id: int | None = None
    name: str
    description: str
    status: OperationStatus = "PLANNING"
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_by_id: str
    threat_actor_id: str | None = None
    visibility: Visibility = "EVERYONE"
    tags: list[IdRef] = Field(default_factory=list)
    targets: list[IdRef] = Field(default_factory=list)
    access_groups: list[GroupRef] = Field(default_factory=list)

    @model_validator(mode="after")
    def _restricted_needs_groups(self) -> "Operation":
        if self.visibility == "GROUPS_ONLY" and not self.access_groups:
            raise ValueError("GROUPS_ONLY visibility requires at least one access group")
        return self


class AttackFlowLayout(Record):
    id: str | None = None
    operation_id: int
    nodes: Any = Field(default_factory=list)
    edges: Any = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def _decode_json(cls, value: Any) -> Any:
        # asyncpg hands JSONB back as text
        if isinstance(value, str):
            return json.loads(value)
        return value


class Technique(Record):
    id: str | None = None
    description: str
    sort_order: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    source_ip: str | None = None
    target_system: str | None = None
    executed_successfully: bool | None = None
    operation_id: int
    mitre_technique_id: str | None = None
    mitre_sub_technique_id: str | None = None
    tools: list[IdRef] = Field(default_factory=list)
    targets: list[TargetAssignment] = Field(default_factory=list)


class Outcome(Record):
    id: str | None = None
    type: OutcomeType
    status: OutcomeStatus
    detection_time: datetime | None = None
    notes: str | None = None
    screenshot_url: str | None = None
    log_data: str | None = None
    technique_id: str
    tools: list[IdRef] = Field(default_factory=list)
    log_sources: list[IdRef] = Field(default_factory=list)


# ============================================================================
# Accounts
# ============================================================================


class User(Record):
    id: str | None = None
    email: str
    name: str | None = None
    role: UserRole | None = None
    last_login: datetime | None = None

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not _EMAIL.match(value):
            raise ValueError("value is not a valid email address")
        return value


class Authenticator(Record):
    id: str | None = None
    credential_id: str = Field(alias="credentialID")
    user_id: str
    provider_account_id: str
    credential_public_key: str
    counter: int
    credential_device_type: str
    credential_backed_up: bool
    transports: str | None = None


class Group(Record):
    id: str | None = None
    name: str
    description: str = ""


class UserGroup(Record):
    user_id: str
    group_id: str


RECORD_MODELS: dict[Category, type[Record]] = {
    Category.MITRE_TACTICS: MitreTactic,
    Category.MITRE_TECHNIQUES: MitreTechnique,
    Category.MITRE_SUB_TECHNIQUES: MitreSubTechnique,
    Category.THREAT_ACTORS: ThreatActor,
    Category.THREAT_ACTOR_TECHNIQUE_LINKS: ThreatActorTechniqueLink,
    Category.TARGETS: Target,
    Category.TAGS: Tag,
    Category.TOOL_CATEGORIES: ToolCategory,
    Category.TOOLS: Tool,
    Category.LOG_SOURCES: LogSource,
    Category.OPERATIONS: Operation,
    Category.ATTACK_FLOW_LAYOUTS: AttackFlowLayout,
    Category.TECHNIQUES: Technique,
    Category.OUTCOMES: Outcome,
    Category.USERS: User,
    Category.AUTHENTICATORS: Authenticator,
    Category.GROUPS: Group,
    Category.USER_GROUPS: UserGroup,
}

# Validated payload: category -> records.  Absent categories are absent keys.
Payload = dict[Category, list[Record]]
