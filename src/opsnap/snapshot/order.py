"""Dependency order table.

``DEPENDENCY_ORDER`` lists every category in safe-to-delete order:
each category appears before every category it references.  The clear
planner walks it forwards; the restore orchestrator and the backup
serializer walk it backwards, so parents always exist before children.

This tuple is the only place category ordering is declared.
"""

from opsnap.snapshot.models import (
    Association,
    Category,
    CategoryDef,
    ForeignKey,
    Scope,
    Section,
)

DEPENDENCY_ORDER: tuple[CategoryDef, ...] = (
    CategoryDef(
        name=Category.OUTCOMES,
        table="outcomes",
        section=Section.OPERATIONS,
        refs=[ForeignKey(category=Category.TECHNIQUES, field="technique_id")],
        associations=[
            Association(
                table="outcome_tools",
                record_field="tools",
                owner_field="outcome_id",
                target_field="tool_id",
                target=Category.TOOLS,
            ),
            Association(
                table="outcome_log_sources",
                record_field="log_sources",
                owner_field="outcome_id",
                target_field="log_source_id",
                target=Category.LOG_SOURCES,
            ),
        ],
    ),
    CategoryDef(
        name=Category.TECHNIQUES,
        table="techniques",
        section=Section.OPERATIONS,
        order_by="operation_id, sort_order",
        refs=[
            ForeignKey(category=Category.OPERATIONS, field="operation_id"),
            ForeignKey(category=Category.MITRE_TECHNIQUES, field="mitre_technique_id"),
            ForeignKey(category=Category.MITRE_SUB_TECHNIQUES, field="mitre_sub_technique_id"),
        ],
        associations=[
            Association(
                table="technique_tools",
                record_field="tools",
                owner_field="technique_id",
                target_field="tool_id",
                target=Category.TOOLS,
            ),
            Association(
                table="technique_targets",
                record_field="targets",
                owner_field="technique_id",
                target_field="target_id",
                target=Category.TARGETS,
                item_field="target_id",
                extra_fields=["was_compromised"],
            ),
        ],
    ),
    CategoryDef(
        name=Category.ATTACK_FLOW_LAYOUTS,
        table="attack_flow_layouts",
        section=Section.OPERATIONS,
        strategy="upsert",
        natural_key=["operation_id"],
        refs=[ForeignKey(category=Category.OPERATIONS, field="operation_id")],
    ),
    CategoryDef(
        name=Category.OPERATIONS,
        table="operations",
        section=Section.OPERATIONS,
        refs=[
            ForeignKey(category=Category.USERS, field="created_by_id"),
            ForeignKey(category=Category.THREAT_ACTORS, field="threat_actor_id"),
        ],
        associations=[
            Association(
                table="operation_tags",
                record_field="tags",
                owner_field="operation_id",
                target_field="tag_id",
                target=Category.TAGS,
            ),
            Association(
                table="operation_targets",
                record_field="targets",
                owner_field="operation_id",
                target_field="target_id",
                target=Category.TARGETS,
            ),
            Association(
                table="operation_access_groups",
                record_field="access_groups",
                owner_field="operation_id",
                target_field="group_id",
                target=Category.GROUPS,
                item_field="group_id",
            ),
        ],
    ),
    CategoryDef(
        name=Category.TOOLS,
        table="tools",
        section=Section.OPERATIONS,
        refs=[ForeignKey(category=Category.TOOL_CATEGORIES, field="category_id")],
    ),
    CategoryDef(name=Category.TOOL_CATEGORIES, table="tool_categories", section=Section.OPERATIONS),
    CategoryDef(name=Category.LOG_SOURCES, table="log_sources", section=Section.OPERATIONS),
    CategoryDef(name=Category.TAGS, table="tags", section=Section.OPERATIONS),
    CategoryDef(name=Category.TARGETS, table="targets", section=Section.OPERATIONS),
    CategoryDef(
        name=Category.THREAT_ACTOR_TECHNIQUE_LINKS,
        table="threat_actor_techniques",
        section=Section.OPERATIONS,
        pk=None,
        order_by="threat_actor_id, mitre_technique_id",
        refs=[
            ForeignKey(category=Category.THREAT_ACTORS, field="threat_actor_id"),
            ForeignKey(category=Category.MITRE_TECHNIQUES, field="mitre_technique_id"),
        ],
    ),
    CategoryDef(name=Category.THREAT_ACTORS, table="threat_actors", section=Section.OPERATIONS),
    CategoryDef(
        name=Category.MITRE_SUB_TECHNIQUES,
        table="mitre_sub_techniques",
        section=Section.TAXONOMY,
        refs=[ForeignKey(category=Category.MITRE_TECHNIQUES, field="technique_id")],
    ),
    CategoryDef(
        name=Category.MITRE_TECHNIQUES,
        table="mitre_techniques",
        section=Section.TAXONOMY,
        refs=[ForeignKey(category=Category.MITRE_TACTICS, field="tactic_id")],
    ),
    CategoryDef(name=Category.MITRE_TACTICS, table="mitre_tactics", section=Section.TAXONOMY),
    CategoryDef(
        name=Category.USER_GROUPS,
        table="user_groups",
        section=Section.ACCOUNTS,
        strategy="upsert",
        pk=None,
        natural_key=["user_id", "group_id"],
        order_by="user_id, group_id",
        refs=[
            ForeignKey(category=Category.USERS, field="user_id", on_missing="skip"),
            ForeignKey(category=Category.GROUPS, field="group_id", on_missing="skip"),
        ],
    ),
    CategoryDef(
        name=Category.AUTHENTICATORS,
        table="authenticators",
        section=Section.ACCOUNTS,
        strategy="replace",
        refs=[ForeignKey(category=Category.USERS, field="user_id")],
    ),
    CategoryDef(
        name=Category.GROUPS,
        table="groups",
        section=Section.ACCOUNTS,
        strategy="upsert",
        natural_key=["name"],
        match_on_pk=True,
    ),
    CategoryDef(
        name=Category.USERS,
        table="users",
        section=Section.ACCOUNTS,
        strategy="upsert",
        natural_key=["email"],
        insert_defaults={"role": "VIEWER"},
    ),
)

CATEGORY_DEFS: dict[Category, CategoryDef] = {d.name: d for d in DEPENDENCY_ORDER}


def deletion_order(scope: Scope) -> list[CategoryDef]:
    """Categories within ``scope``, dependents before their dependencies."""
    sections = scope.sections()
    return [d for d in DEPENDENCY_ORDER if d.section in sections]


def creation_order(scope: Scope) -> list[CategoryDef]:
    """Categories within ``scope``, dependencies before their dependents."""
    return list(reversed(deletion_order(scope)))
