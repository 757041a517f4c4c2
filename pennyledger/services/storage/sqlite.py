"""
SQLite Storage Implementation

Embedded single-file database using the standard sqlite3 driver.

DESIGN DECISION: One connection, one asyncio.Lock.
The engines are async but SQLite is a single writer. Every statement and
every transaction takes the lock, so a transaction never interleaves with
another coroutine's writes.

Transactions are explicit (BEGIN IMMEDIATE / COMMIT / ROLLBACK) with the
driver's implicit transaction handling switched off. The callback gets a
handle that runs on the already-locked connection; calling the storage
object itself from inside the callback would deadlock, so that is
detected and raised as a StorageError instead.
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pennyledger.config import DatabaseSettings, get_settings
from pennyledger.services.storage.interface import (
    ConnectionError,
    ConstraintError,
    ExecuteResult,
    Row,
    StorageError,
    StorageHandle,
    StorageInterface,
)
from pennyledger.services.storage.schema import SCHEMA_SQL, TABLES

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class _SQLiteHandle(StorageHandle):
    """Statement runner bound to one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def _run(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as e:
            logger.warning("storage_constraint_failed", sql=sql, error=str(e))
            raise ConstraintError(f"Constraint failed: {e}") from e
        except sqlite3.Error as e:
            logger.error("storage_query_failed", sql=sql, error=str(e))
            raise StorageError(f"Query failed: {e}") from e

    async def execute_query(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        cursor = self._run(sql, params)
        return ExecuteResult(changes=cursor.rowcount, last_insert_id=cursor.lastrowid)

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        return [dict(row) for row in self._run(sql, params).fetchall()]

    async def query_first(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        row = self._run(sql, params).fetchone()
        return dict(row) if row is not None else None


class SQLiteStorage(StorageInterface):
    """
    SQLite implementation of storage interface.

    Usage:
        storage = SQLiteStorage(path=":memory:")
        storage.connect()
        rows = await storage.query_all("SELECT * FROM accounts")
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        path: Optional[str] = None,
    ):
        self._settings = settings or get_settings().database
        self._path = path or self._settings.path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None

    @property
    def path(self) -> str:
        return self._path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception_type(sqlite3.OperationalError),
        reraise=True,
    )
    def _open(self) -> sqlite3.Connection:
        return sqlite3.connect(
            self._path,
            timeout=self._settings.timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )

    def connect(self) -> sqlite3.Connection:
        """
        Open the database file and make sure the schema exists.

        Safe to call more than once.
        """
        if self._conn is None:
            try:
                conn = self._open()
                conn.row_factory = sqlite3.Row
                pragma = "ON" if self._settings.foreign_keys else "OFF"
                conn.execute(f"PRAGMA foreign_keys = {pragma}")
                conn.executescript(SCHEMA_SQL)
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open database {self._path}: {e}") from e

            self._conn = conn
            logger.info(
                "storage_connected",
                path=self._path,
                foreign_keys=self._settings.foreign_keys,
            )

        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[sqlite3.Connection]:
        task = asyncio.current_task()
        if task is not None and self._owner is task:
            raise StorageError(
                "Storage called from inside its own transaction; use the transaction handle"
            )

        conn = self.connect()
        async with self._lock:
            self._owner = task
            try:
                yield conn
            finally:
                self._owner = None

    async def execute_query(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        async with self._exclusive() as conn:
            return await _SQLiteHandle(conn).execute_query(sql, params)

    async def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        async with self._exclusive() as conn:
            return await _SQLiteHandle(conn).query_all(sql, params)

    async def query_first(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        async with self._exclusive() as conn:
            return await _SQLiteHandle(conn).query_first(sql, params)

    async def execute_transaction(
        self,
        fn: Callable[[StorageHandle], Awaitable[T]],
    ) -> T:
        async with self._exclusive() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Failed to begin transaction: {e}") from e

            try:
                result = await fn(_SQLiteHandle(conn))
            except BaseException:
                conn.execute("ROLLBACK")
                logger.info("storage_transaction_rolled_back")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageError(f"Failed to commit transaction: {e}") from e

            return result

    async def reset(self) -> None:
        """Drop every table and recreate the empty schema."""
        async with self._exclusive() as conn:
            try:
                for table in TABLES:
                    conn.execute(f"DROP TABLE IF EXISTS {table}")
                conn.executescript(SCHEMA_SQL)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to reset database: {e}") from e
        logger.warning("storage_reset", path=self._path)
