"""
SQLite persistence for the change event log and the sync task queue.

A single aiosqlite connection is shared by all components of an engine.
Writes are serialized through a lock and committed per statement, so one
component's commit never flushes another's half-finished work.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

import aiosqlite

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS change_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    change_kind TEXT NOT NULL,
    version INTEGER NOT NULL,
    project_id INTEGER,
    urgent INTEGER NOT NULL DEFAULT 0,
    occurred_at TEXT NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_change_events_processed
    ON change_events (processed, occurred_at);

CREATE TABLE IF NOT EXISTS sync_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    operation TEXT NOT NULL,
    target_version INTEGER,
    status TEXT NOT NULL DEFAULT 'PENDING',
    retry_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    claimed_at TEXT,
    processed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_tasks_status
    ON sync_tasks (status, created_at);

-- At most one live task per entity and target version
CREATE UNIQUE INDEX IF NOT EXISTS uq_sync_tasks_live
    ON sync_tasks (entity_type, entity_id, COALESCE(target_version, -1))
    WHERE status IN ('PENDING', 'PROCESSING', 'FAILED');
"""


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Fixed-width ISO timestamp so stored values compare correctly as text"""
    return (moment or datetime.now()).isoformat(timespec="microseconds")


class SyncDatabase:
    """Owns the aiosqlite connection and the schema"""

    def __init__(self, path: str = ":memory:", busy_timeout_ms: int = 5000):
        """
        Args:
            path: SQLite file path, or ":memory:" for a private in-memory database
            busy_timeout_ms: How long a writer waits on a lock held by another process
        """
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("SyncDatabase is not connected; call connect() first")
        return self._db

    async def connect(self) -> None:
        """Open the connection and create the schema if needed"""
        if self._db is not None:
            return

        in_memory = self.path == ":memory:"
        target = self.path
        if not in_memory:
            db_file = Path(self.path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_file)

        db = await aiosqlite.connect(target)
        db.row_factory = aiosqlite.Row
        await db.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        if not in_memory:
            await db.execute("PRAGMA journal_mode = WAL")
        await db.executescript(SCHEMA)
        await db.commit()

        self._db = db
        logger.info(f"Opened sync database at {self.path}")

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        logger.info("Closed sync database")

    async def execute_write(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute a single write statement and commit it"""
        async with self._write_lock:
            cursor = await self.connection.execute(sql, tuple(params))
            await self.connection.commit()
            return cursor

    async def execute_returning(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        """Execute a write with a RETURNING clause, commit, and return the rows"""
        async with self._write_lock:
            async with self.connection.execute(sql, tuple(params)) as cur:
                rows = await cur.fetchall()
            await self.connection.commit()
            return list(rows)

    async def execute_many_writes(self, statements: Iterable[tuple]) -> int:
        """Execute several (sql, params) writes in one transaction"""
        total = 0
        async with self._write_lock:
            try:
                for sql, params in statements:
                    cursor = await self.connection.execute(sql, tuple(params))
                    total += max(cursor.rowcount, 0)
                await self.connection.commit()
            except Exception:
                await self.connection.rollback()
                raise
        return total

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        async with self.connection.execute(sql, tuple(params)) as cur:
            return list(await cur.fetchall())

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        async with self.connection.execute(sql, tuple(params)) as cur:
            return await cur.fetchone()

    async def fetch_value(self, sql: str, params: Sequence[Any] = (), default: Any = 0) -> Any:
        row = await self.fetch_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
