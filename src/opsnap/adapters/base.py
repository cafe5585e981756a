"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that all adapters must implement.
All methods are ``async def`` -- the library is async-first.

``transaction()`` returns a client bound to a single connection.  Every
call made through that client joins the same transaction, which commits
when the ``async with`` block exits normally and rolls back otherwise.

Usage:
    from opsnap.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("tags", "id, name")
        async with client.transaction() as tx:
            await tx.delete("operation_tags")
            await tx.insert("tags", {"id": "t1", "name": "Stealth"})
        await client.close()
"""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    Filter values that are lists, tuples or sets match with ``IN``; every
    other value matches with ``=``.  All filters are combined with AND.

    All methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name"``),
                ``"*"``, or an aggregate such as ``"count(*) as cnt"``.
            filters: Optional dict of field=value filters.
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.

        Example:
            rows = await client.select(
                "groups",
                "id, name",
                filters={"id": ["g1", "g2"]},
                order_by="name",
            )
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row.

        Raises:
            Exception: If duplicate key or constraint violation.
        """
        ...

    async def insert_many(self, table: str, rows: list[dict]) -> int:
        """Insert a batch of rows and return how many were written.

        Rows do not need identical keys; the adapter groups them by
        column set.

        Raises:
            Exception: If any row violates a constraint.
        """
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Raises:
            Exception: If no rows match filters.
        """
        ...

    async def delete(self, table: str, filters: dict[str, Any] | None = None) -> None:
        """Delete rows from table.

        With no filters every row of the table is deleted.

        Example:
            await client.delete("tags", {"id": "abc-123"})
            await client.delete("operation_tags")
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a raw SQL statement (DDL or other non-query operations)."""
        ...

    def transaction(self) -> AbstractAsyncContextManager["DatabaseClient"]:
        """Open a transaction and yield a client bound to it.

        Example:
            async with client.transaction() as tx:
                await tx.insert("tags", {"name": "Loud"})
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
