"""SQLite store implementation.

Uses the stdlib sqlite3 module with a dedicated single-thread executor, so
every statement on the shared connection runs on the same worker thread in
submission order. An open transaction belongs to the task that began it;
statements from other tasks wait until it commits or rolls back.

Features:
    - WAL mode by default for concurrent reads
    - Automatic busy_timeout for lock contention handling
    - Foreign key enforcement enabled
    - Parent directory creation for file databases
    - sqlite3 errors surfaced as StoreError
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, TypeVar

from ..exceptions import StoreError
from .backend import Params, QueryResult, StoreConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqliteStore:
    """SQLite store using stdlib sqlite3 with an async executor.

    Example:
        store = SqliteStore()
        await store.connect(StoreConfig(path="data/ratchet.db"))
        result = await store.query("SELECT * FROM tool_policies WHERE scope = ?", ("global",))
        await store.disconnect()
    """

    DEFAULT_PRAGMAS: dict[str, str | int] = {
        "journal_mode": "WAL",
        "busy_timeout": 30000,
        "synchronous": "NORMAL",
        "foreign_keys": "ON",
    }

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self._in_transaction: bool = False
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None
        self._executor: ThreadPoolExecutor | None = None
        self.path: str | None = None

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        if self._executor is None:
            raise StoreError(operation, "not connected to database; call connect() first")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, fn)
        except sqlite3.Error as e:
            raise StoreError(operation, str(e)) from e

    def _owns_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    async def _guarded(self, operation: str, fn: Callable[[], T]) -> T:
        if self._owns_transaction():
            return await self._run(operation, fn)
        async with self._lock:
            return await self._run(operation, fn)

    def _end_transaction(self) -> None:
        self._in_transaction = False
        if self._tx_owner is not None:
            self._tx_owner = None
            self._lock.release()

    async def connect(self, config: StoreConfig) -> None:
        """Open the database, creating parent directories for file paths.

        Raises:
            StoreError: If the database cannot be opened
        """
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ratchet-sqlite")
        self.path = config.path

        def _connect() -> sqlite3.Connection:
            path = config.path
            if path != ":memory:" and not path.startswith(":"):
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(path, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            pragmas = {**self.DEFAULT_PRAGMAS, **config.pragmas}
            if config.timeout:
                pragmas["busy_timeout"] = config.timeout * 1000

            for pragma, value in pragmas.items():
                try:
                    conn.execute(f"PRAGMA {pragma}={value}")
                except sqlite3.Error as e:
                    logger.warning(f"Failed to set PRAGMA {pragma}={value}: {e}")

            logger.debug(f"Connected to SQLite database: {path}")
            return conn

        try:
            self._conn = await self._run("connect", _connect)
        except StoreError:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise

    async def disconnect(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._conn is None or self._executor is None:
            return
        conn = self._conn
        await self._run("disconnect", conn.close)
        self._executor.shutdown(wait=True)
        self._executor = None
        self._conn = None
        self._end_transaction()
        logger.debug("Disconnected from SQLite database")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Not connected to database. Call connect() first.")
        return self._conn

    async def query(self, sql: str, params: Params = None) -> QueryResult:
        def _query() -> QueryResult:
            cursor = self._connection().execute(sql, self._normalize_params(params))
            rows = [dict(row) for row in cursor.fetchall()]
            columns = [desc[0] for desc in cursor.description] if cursor.description else []
            return QueryResult(rows=rows, row_count=len(rows), columns=columns)

        return await self._guarded("query", _query)

    async def execute(self, sql: str, params: Params = None) -> QueryResult:
        """Execute INSERT/UPDATE/DELETE. Auto-commits unless in a transaction."""

        def _execute() -> QueryResult:
            conn = self._connection()
            cursor = conn.execute(sql, self._normalize_params(params))
            if "RETURNING" in sql.upper() and cursor.description:
                rows = [dict(row) for row in cursor.fetchall()]
                columns = [desc[0] for desc in cursor.description]
            else:
                rows, columns = [], []

            if not self._in_transaction:
                conn.commit()

            return QueryResult(
                rows=rows,
                row_count=len(rows) if rows else cursor.rowcount,
                columns=columns,
                last_insert_id=cursor.lastrowid,
                affected_rows=cursor.rowcount,
            )

        return await self._guarded("execute", _execute)

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement script; executescript commits implicitly."""

        def _script() -> None:
            self._connection().executescript(sql)
            self._in_transaction = False

        await self._guarded("execute_script", _script)

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        """Begin a transaction (deferred, immediate or exclusive).

        Holds the store until the same task calls commit() or rollback().

        Raises:
            StoreError: If this task already has a transaction open
        """
        if self._owns_transaction():
            raise StoreError("begin", "transaction already active in this task")

        def _begin() -> None:
            mode = ""
            if isolation_level and isolation_level.lower() in ("immediate", "exclusive", "deferred"):
                mode = f" {isolation_level.upper()}"
            self._connection().execute(f"BEGIN{mode}")
            self._in_transaction = True

        await self._lock.acquire()
        try:
            await self._run("begin", _begin)
        except BaseException:
            self._lock.release()
            raise
        self._tx_owner = asyncio.current_task()

    async def commit(self) -> None:
        """Commit the current transaction; a failed commit is rolled back."""

        def _commit() -> None:
            conn = self._connection()
            try:
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            finally:
                self._in_transaction = False

        if not self._owns_transaction():
            await self._guarded("commit", _commit)
            return
        try:
            await self._run("commit", _commit)
        finally:
            self._end_transaction()

    async def rollback(self) -> None:
        """Rollback the current transaction. Safe to call with none active."""
        if self._conn is None:
            if self._owns_transaction():
                self._end_transaction()
            return

        def _rollback() -> None:
            try:
                self._connection().rollback()
            except sqlite3.Error as e:
                logger.warning(f"Rollback failed: {e}")
            self._in_transaction = False

        if not self._owns_transaction():
            await self._guarded("rollback", _rollback)
            return
        try:
            await self._run("rollback", _rollback)
        finally:
            self._end_transaction()

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def _normalize_params(self, params: Params) -> tuple[Any, ...] | dict[str, Any]:
        if params is None:
            return ()
        if isinstance(params, dict):
            return params
        if isinstance(params, list):
            return tuple(params)
        return params
