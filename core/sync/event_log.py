"""
Durable change event log.

Append-only record of every observed entity change. Rows are never updated
except for the ``processed`` flag, which makes unprocessed rows the recovery
source for events whose task derivation did not happen.
"""

import logging
from datetime import datetime
from typing import List, Optional

from ..models.entities import EntityType
from ..storage.database import SyncDatabase, format_timestamp
from .events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


class ChangeEventLog:
    """Change event log backed by the ``change_events`` table"""

    def __init__(self, database: SyncDatabase):
        self.database = database

    async def record(
        self,
        entity_type: EntityType,
        entity_id: int,
        change_kind: ChangeKind,
        version: int,
        urgent: bool = False,
        project_id: Optional[int] = None,
        occurred_at: Optional[datetime] = None
    ) -> ChangeEvent:
        """
        Durably append a change event.

        Write failures propagate to the caller; intake wrappers decide
        whether the write path should see them.

        Returns:
            The stored event, including its assigned id
        """
        event = ChangeEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            change_kind=change_kind,
            version=version,
            urgent=urgent,
            project_id=project_id,
            occurred_at=occurred_at or datetime.now()
        )

        cursor = await self.database.execute_write(
            """
            INSERT INTO change_events (
                entity_type, entity_id, change_kind, version, project_id,
                urgent, occurred_at, processed
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0)
            """,
            (
                event.entity_type.value,
                event.entity_id,
                event.change_kind.value,
                event.version,
                event.project_id,
                1 if event.urgent else 0,
                format_timestamp(event.occurred_at),
            )
        )
        event.event_id = cursor.lastrowid

        logger.debug(f"Recorded change event #{event.event_id}: {event}")
        return event

    async def mark_processed(self, event_id: int) -> bool:
        """
        Mark an event as processed. Idempotent.

        Returns:
            True if this call flipped the flag, False if it was already set
            or the event does not exist
        """
        cursor = await self.database.execute_write(
            "UPDATE change_events SET processed = 1, processed_at = ? WHERE id = ? AND processed = 0",
            (format_timestamp(), event_id)
        )
        return cursor.rowcount > 0

    async def get_event(self, event_id: int) -> Optional[ChangeEvent]:
        row = await self.database.fetch_one(
            "SELECT * FROM change_events WHERE id = ?", (event_id,)
        )
        return ChangeEvent.from_row(row) if row else None

    async def list_unprocessed(
        self,
        limit: int = 100,
        older_than: Optional[datetime] = None
    ) -> List[ChangeEvent]:
        """
        List events that still need a task derived from them, oldest first.

        Args:
            limit: Maximum events to return
            older_than: Only include events that occurred before this moment
        """
        if older_than is not None:
            rows = await self.database.fetch_all(
                """
                SELECT * FROM change_events
                WHERE processed = 0 AND occurred_at < ?
                ORDER BY occurred_at, id LIMIT ?
                """,
                (format_timestamp(older_than), limit)
            )
        else:
            rows = await self.database.fetch_all(
                "SELECT * FROM change_events WHERE processed = 0 ORDER BY occurred_at, id LIMIT ?",
                (limit,)
            )
        return [ChangeEvent.from_row(row) for row in rows]

    async def latest_event(self, entity_type: EntityType, entity_id: int) -> Optional[ChangeEvent]:
        """Most recent event recorded for an entity"""
        row = await self.database.fetch_one(
            """
            SELECT * FROM change_events
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY occurred_at DESC, id DESC LIMIT 1
            """,
            (EntityType.parse(entity_type).value, entity_id)
        )
        return ChangeEvent.from_row(row) if row else None

    async def count_unprocessed(self) -> int:
        return await self.database.fetch_value(
            "SELECT COUNT(*) FROM change_events WHERE processed = 0"
        )

    async def delete_processed_older_than(self, cutoff: datetime) -> int:
        """Delete processed events that occurred before ``cutoff``"""
        cursor = await self.database.execute_write(
            "DELETE FROM change_events WHERE processed = 1 AND occurred_at < ?",
            (format_timestamp(cutoff),)
        )
        deleted = max(cursor.rowcount, 0)
        if deleted:
            logger.info(f"Deleted {deleted} processed change events older than {cutoff.isoformat()}")
        return deleted
