"""
Durable sync task queue.

Tasks move through PENDING -> PROCESSING -> COMPLETED/FAILED, with FAILED
tasks re-armed to PENDING until the retry ceiling and then ABANDONED.
Every state transition is a single conditional UPDATE, so concurrent
schedulers (in one process or several) can never both own a task.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from ..models.entities import EntityType
from ..storage.database import SyncDatabase, format_timestamp
from .events import SyncOperation, SyncTask, TaskStatus

logger = logging.getLogger(__name__)

TIMEOUT_RESET_MESSAGE = "task processing timed out, reset to pending"


class SyncTaskQueue:
    """Sync task queue backed by the ``sync_tasks`` table"""

    def __init__(self, database: SyncDatabase):
        self.database = database

    async def enqueue(
        self,
        entity_type: EntityType,
        entity_id: int,
        operation: SyncOperation,
        target_version: Optional[int] = None
    ) -> Optional[int]:
        """
        Create a PENDING task unless a live one already exists.

        A task is live while PENDING, PROCESSING or FAILED. The dedup key is
        (entity_type, entity_id, target_version) and is enforced by a partial
        unique index, so the check and the insert are one atomic statement.

        Returns:
            The new task id, or None if the enqueue was skipped as a duplicate
        """
        entity_type = EntityType.parse(entity_type)
        now = format_timestamp()

        cursor = await self.database.execute_write(
            """
            INSERT OR IGNORE INTO sync_tasks (
                entity_type, entity_id, operation, target_version,
                status, retry_count, created_at, updated_at
            ) VALUES (?, ?, ?, ?, 'PENDING', 0, ?, ?)
            """,
            (entity_type.value, entity_id, operation.value, target_version, now, now)
        )

        if cursor.rowcount == 0:
            logger.debug(
                f"Skipped duplicate task for {entity_type.value}:{entity_id} "
                f"v{target_version} ({operation.value})"
            )
            return None

        task_id = cursor.lastrowid
        logger.debug(f"Enqueued task #{task_id}: {operation.value} {entity_type.value}:{entity_id} v{target_version}")
        return task_id

    async def claim_batch(self, limit: int) -> List[SyncTask]:
        """
        Atomically claim up to ``limit`` PENDING tasks, oldest first.

        The selection and the PENDING -> PROCESSING flip happen in one
        UPDATE ... RETURNING statement.
        """
        if limit <= 0:
            return []

        now = format_timestamp()
        rows = await self.database.execute_returning(
            """
            UPDATE sync_tasks
            SET status = 'PROCESSING', claimed_at = ?, updated_at = ?
            WHERE status = 'PENDING' AND id IN (
                SELECT id FROM sync_tasks
                WHERE status = 'PENDING'
                ORDER BY created_at, id
                LIMIT ?
            )
            RETURNING *
            """,
            (now, now, limit)
        )

        tasks = sorted((SyncTask.from_row(row) for row in rows), key=lambda t: (t.created_at, t.task_id))
        if tasks:
            logger.debug(f"Claimed {len(tasks)} tasks")
        return tasks

    async def claim(self, task_id: int) -> Optional[SyncTask]:
        """Claim one specific task if it is still PENDING"""
        now = format_timestamp()
        rows = await self.database.execute_returning(
            """
            UPDATE sync_tasks
            SET status = 'PROCESSING', claimed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'PENDING'
            RETURNING *
            """,
            (now, now, task_id)
        )
        return SyncTask.from_row(rows[0]) if rows else None

    async def complete(self, task_id: int) -> bool:
        """Mark a claimed task COMPLETED"""
        now = format_timestamp()
        cursor = await self.database.execute_write(
            """
            UPDATE sync_tasks
            SET status = 'COMPLETED', error_message = NULL, processed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'PROCESSING'
            """,
            (now, now, task_id)
        )
        if cursor.rowcount == 0:
            logger.warning(f"Task #{task_id} was not PROCESSING when completing; ignoring")
            return False
        return True

    async def fail(self, task_id: int, error: str) -> bool:
        """Mark a claimed task FAILED, recording the error and counting the retry"""
        now = format_timestamp()
        cursor = await self.database.execute_write(
            """
            UPDATE sync_tasks
            SET status = 'FAILED', retry_count = retry_count + 1,
                error_message = ?, processed_at = ?, updated_at = ?
            WHERE id = ? AND status = 'PROCESSING'
            """,
            (error, now, now, task_id)
        )
        if cursor.rowcount == 0:
            logger.warning(f"Task #{task_id} was not PROCESSING when failing; ignoring")
            return False
        return True

    async def reset_timed_out(self, older_than: timedelta, now: Optional[datetime] = None) -> int:
        """
        Return PROCESSING tasks claimed more than ``older_than`` ago to PENDING.

        A task stuck in PROCESSING means its worker crashed or was killed.
        """
        now = now or datetime.now()
        cutoff = now - older_than
        cursor = await self.database.execute_write(
            """
            UPDATE sync_tasks
            SET status = 'PENDING', claimed_at = NULL, error_message = ?, updated_at = ?
            WHERE status = 'PROCESSING' AND claimed_at < ?
            """,
            (TIMEOUT_RESET_MESSAGE, format_timestamp(now), format_timestamp(cutoff))
        )
        reset = max(cursor.rowcount, 0)
        if reset:
            logger.warning(f"Reset {reset} timed-out tasks back to PENDING")
        return reset

    async def rearm_failed(
        self,
        max_retries: int,
        backoff: Optional[Callable[[int], float]] = None,
        now: Optional[datetime] = None
    ) -> int:
        """
        Move FAILED tasks still within the retry ceiling back to PENDING.

        Args:
            max_retries: Tasks with ``retry_count <= max_retries`` are re-armed
            backoff: Seconds to wait after the last failure, given the retry count
            now: Current time (defaults to ``datetime.now()``)

        Returns:
            Number of tasks re-armed
        """
        now = now or datetime.now()
        rows = await self.database.fetch_all(
            "SELECT id, retry_count, updated_at FROM sync_tasks WHERE status = 'FAILED' AND retry_count <= ?",
            (max_retries,)
        )

        statements = []
        stamp = format_timestamp(now)
        for row in rows:
            if backoff is not None:
                failed_at = datetime.fromisoformat(row["updated_at"])
                if failed_at + timedelta(seconds=backoff(row["retry_count"])) > now:
                    continue
            statements.append((
                "UPDATE sync_tasks SET status = 'PENDING', claimed_at = NULL, updated_at = ? "
                "WHERE id = ? AND status = 'FAILED'",
                (stamp, row["id"])
            ))

        if not statements:
            return 0

        rearmed = await self.database.execute_many_writes(statements)
        if rearmed:
            logger.info(f"Re-armed {rearmed} failed tasks for retry")
        return rearmed

    async def abandon_exhausted(self, max_retries: int) -> List[SyncTask]:
        """Move FAILED tasks past the retry ceiling to ABANDONED"""
        rows = await self.database.execute_returning(
            """
            UPDATE sync_tasks
            SET status = 'ABANDONED', updated_at = ?
            WHERE status = 'FAILED' AND retry_count > ?
            RETURNING *
            """,
            (format_timestamp(), max_retries)
        )

        abandoned = [SyncTask.from_row(row) for row in rows]
        for task in abandoned:
            logger.error(
                f"Abandoned {task} after {task.retry_count} failures; "
                f"last error: {task.error_message}"
            )
        return abandoned

    async def requeue(self, task_id: int) -> bool:
        """
        Manually re-trigger an ABANDONED or FAILED task.

        Resets the retry count. Refused (returns False) when another live
        task already holds the same entity and target version.
        """
        try:
            cursor = await self.database.execute_write(
                """
                UPDATE sync_tasks
                SET status = 'PENDING', retry_count = 0, error_message = NULL,
                    claimed_at = NULL, updated_at = ?
                WHERE id = ? AND status IN ('ABANDONED', 'FAILED')
                """,
                (format_timestamp(), task_id)
            )
        except sqlite3.IntegrityError:
            logger.warning(f"Cannot requeue task #{task_id}: a live task for the same target exists")
            return False

        if cursor.rowcount == 0:
            return False

        logger.info(f"Requeued task #{task_id}")
        return True

    async def delete_completed_older_than(self, cutoff: datetime) -> int:
        """Delete COMPLETED tasks last updated before ``cutoff``"""
        cursor = await self.database.execute_write(
            "DELETE FROM sync_tasks WHERE status = 'COMPLETED' AND updated_at < ?",
            (format_timestamp(cutoff),)
        )
        deleted = max(cursor.rowcount, 0)
        if deleted:
            logger.info(f"Deleted {deleted} completed tasks older than {cutoff.isoformat()}")
        return deleted

    async def get(self, task_id: int) -> Optional[SyncTask]:
        row = await self.database.fetch_one("SELECT * FROM sync_tasks WHERE id = ?", (task_id,))
        return SyncTask.from_row(row) if row else None

    async def list_tasks(
        self,
        status: Optional[TaskStatus] = None,
        limit: int = 50
    ) -> List[SyncTask]:
        """List tasks, most recently updated first"""
        if status is not None:
            rows = await self.database.fetch_all(
                "SELECT * FROM sync_tasks WHERE status = ? ORDER BY updated_at DESC, id DESC LIMIT ?",
                (status.value, limit)
            )
        else:
            rows = await self.database.fetch_all(
                "SELECT * FROM sync_tasks ORDER BY updated_at DESC, id DESC LIMIT ?",
                (limit,)
            )
        return [SyncTask.from_row(row) for row in rows]

    async def find_live(
        self,
        entity_type: EntityType,
        entity_id: int,
        target_version: Optional[int] = None
    ) -> Optional[SyncTask]:
        """The live task holding an entity's dedup key, if any"""
        row = await self.database.fetch_one(
            """
            SELECT * FROM sync_tasks
            WHERE entity_type = ? AND entity_id = ?
              AND COALESCE(target_version, -1) = COALESCE(?, -1)
              AND status IN ('PENDING', 'PROCESSING', 'FAILED')
            """,
            (EntityType.parse(entity_type).value, entity_id, target_version)
        )
        return SyncTask.from_row(row) if row else None

    async def count_by_status(self) -> Dict[TaskStatus, int]:
        rows = await self.database.fetch_all(
            "SELECT status, COUNT(*) AS n FROM sync_tasks GROUP BY status"
        )
        counts = {status: 0 for status in TaskStatus}
        for row in rows:
            counts[TaskStatus(row["status"])] = row["n"]
        return counts
