"""Clear planner.

Deletes every row of every category inside a scope, walking the
dependency table forwards so dependents go before what they reference.
A category's join tables are emptied before its own table.

``clear_categories`` runs against whatever client it is handed; the
restore orchestrator passes its transaction-bound client so clearing and
re-creation commit or roll back together.  ``clear_scope`` is the
stand-alone entry point and opens its own transaction.
"""

import logging

from opsnap.adapters.base import DatabaseClient
from opsnap.snapshot.errors import TransactionFailure
from opsnap.snapshot.models import Category, Scope
from opsnap.snapshot.order import deletion_order

logger = logging.getLogger(__name__)


async def clear_categories(client: DatabaseClient, scope: Scope) -> dict[Category, int]:
    """Delete all rows in ``scope`` and return the per-category row counts removed."""
    deleted: dict[Category, int] = {}
    for category_def in deletion_order(scope):
        rows = await client.select(category_def.table, "count(*) as cnt")
        deleted[category_def.name] = rows[0]["cnt"] if rows else 0
        for table in category_def.tables:
            await client.delete(table)
        logger.debug("Cleared %s (%d rows)", category_def.name.value, deleted[category_def.name])
    return deleted


async def clear_scope(adapter: DatabaseClient, scope: Scope) -> dict[Category, int]:
    """Delete all rows in ``scope`` inside one transaction.

    Raises:
        ValueError: If the scope selects nothing.
        TransactionFailure: If the store rejects a delete; nothing is removed.
    """
    if scope.is_empty():
        raise ValueError("Select at least one section to clear")

    try:
        async with adapter.transaction() as tx:
            deleted = await clear_categories(tx, scope)
    except Exception as e:
        logger.error(
            "Clear data error",
            extra={"event": "database.clear_failed", "error": str(e)},
        )
        raise TransactionFailure("Failed to clear data") from e

    logger.info(
        "Cleared %d rows",
        sum(deleted.values()),
        extra={"event": "database.cleared", "scope": scope.model_dump()},
    )
    return deleted
