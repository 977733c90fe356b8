"""Store protocol and data classes shared by the plugin's persistence code.

The policy engine, provider registry, webhook manager and security audit only
depend on :class:`Store`; any object with these coroutines can stand in for
the bundled SQLite implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# Type alias for query parameters
Params = tuple[Any, ...] | list[Any] | dict[str, Any] | None


@dataclass
class StoreConfig:
    """Store connection configuration.

    Attributes:
        path: SQLite database file path (or ":memory:" for in-memory)
        timeout: Busy timeout in seconds
        pragmas: Extra PRAGMA settings applied after connecting
    """

    path: str
    timeout: int = 30
    pragmas: dict[str, str | int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("store requires a 'path'")


@dataclass
class QueryResult:
    """Result of a store call.

    Attributes:
        rows: Result rows as list of dicts (for SELECT queries)
        row_count: Number of rows returned (SELECT) or affected (INSERT/UPDATE/DELETE)
        columns: Column names from result set
        last_insert_id: Last inserted row ID (for INSERT operations)
        affected_rows: Number of rows affected by INSERT/UPDATE/DELETE
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    columns: list[str] = field(default_factory=list)
    last_insert_id: int | None = None
    affected_rows: int = 0

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


@runtime_checkable
class Store(Protocol):
    """Relational store consumed by the plugin.

    Implementations raise :class:`ratchet_plugin.exceptions.StoreError` for
    every failure of the underlying database.
    """

    async def query(self, sql: str, params: Params = None) -> QueryResult:
        """Execute a SELECT and return its rows."""
        ...

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Execute an INSERT/UPDATE/DELETE, auto-committing outside transactions."""
        ...

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement script (schema DDL)."""
        ...

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
