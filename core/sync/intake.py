"""
Change intake.

Records change events, hands them to the channel, and derives sync tasks
from them. The ``notify_*`` methods are the write-path entry points: they
never raise, so a failure here can never fail the caller's business write.
Anything that was recorded but never turned into a task is picked up again
by ``replay_unprocessed``.
"""

import asyncio
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.entities import EntityType
from .event_log import ChangeEventLog
from .events import ChangeEvent, ChangeKind, SyncOperation
from .processor import TaskProcessor
from .queue import ChangeEventChannel
from .task_queue import SyncTaskQueue

logger = logging.getLogger(__name__)


def content_hash(content: Optional[str]) -> str:
    return hashlib.md5((content or "").encode("utf-8")).hexdigest()


def content_changed(old_content: Optional[str], new_content: Optional[str]) -> bool:
    """True if the two texts differ by MD5 digest"""
    return content_hash(old_content) != content_hash(new_content)


def coalesce_events(events: Iterable[ChangeEvent]) -> List[ChangeEvent]:
    """
    Keep one event per entity and order the survivors by priority.

    A deletion beats any other change to the same entity whatever its
    version, since delete events often carry no known version. Otherwise the
    highest version survives, then the later event.
    """
    latest: Dict[Tuple[EntityType, int], ChangeEvent] = {}
    for event in events:
        key = (event.entity_type, event.entity_id)
        current = latest.get(key)
        if current is None or _rank(event) > _rank(current):
            latest[key] = event
    return sorted(latest.values())


def _rank(event: ChangeEvent):
    return (
        event.change_kind == ChangeKind.DELETE,
        event.version,
        event.occurred_at,
        event.event_id or 0
    )


class ChangeIntake:
    """Turns observed entity changes into deduplicated sync tasks"""

    def __init__(
        self,
        event_log: ChangeEventLog,
        task_queue: SyncTaskQueue,
        channel: ChangeEventChannel,
        processor: Optional[TaskProcessor] = None,
        poll_timeout: float = 1.0
    ):
        self.event_log = event_log
        self.task_queue = task_queue
        self.channel = channel
        self.processor = processor
        self.poll_timeout = poll_timeout

        self._consumer: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

        self.events_recorded = 0
        self.tasks_derived = 0
        self.intake_failures = 0

    # Write-path entry points

    async def notify_change(
        self,
        entity_type: EntityType,
        entity_id: int,
        change_kind: ChangeKind,
        version: int,
        urgent: bool = False,
        project_id: Optional[int] = None
    ) -> Optional[ChangeEvent]:
        """
        Record a change without ever failing the caller.

        Returns:
            The recorded event, or None if recording failed
        """
        try:
            return await self.record_change(
                entity_type, entity_id, change_kind, version,
                urgent=urgent, project_id=project_id
            )
        except Exception as e:
            self.intake_failures += 1
            logger.error(
                f"Failed to record {change_kind.value} for "
                f"{getattr(entity_type, 'value', entity_type)}:{entity_id} v{version}: {e}"
            )
            return None

    async def notify_create(
        self,
        entity_type: EntityType,
        entity_id: int,
        project_id: Optional[int] = None
    ) -> Optional[ChangeEvent]:
        """A newly created entity starts at version 1"""
        return await self.notify_change(entity_type, entity_id, ChangeKind.CREATE, 1, project_id=project_id)

    async def notify_update(
        self,
        entity_type: EntityType,
        entity_id: int,
        version: int,
        project_id: Optional[int] = None,
        old_content: Optional[str] = None,
        new_content: Optional[str] = None,
        urgent: bool = False
    ) -> Optional[ChangeEvent]:
        """
        Record an update. When both texts are given and hash the same, the
        update is skipped and None is returned.
        """
        if old_content is not None and new_content is not None:
            if not content_changed(old_content, new_content):
                logger.debug(f"{EntityType.parse(entity_type).value}:{entity_id} content unchanged; skipping")
                return None
        return await self.notify_change(
            entity_type, entity_id, ChangeKind.UPDATE, version,
            urgent=urgent, project_id=project_id
        )

    async def notify_delete(
        self,
        entity_type: EntityType,
        entity_id: int,
        version: int = 0,
        project_id: Optional[int] = None
    ) -> Optional[ChangeEvent]:
        """Deletions are always urgent"""
        return await self.notify_change(
            entity_type, entity_id, ChangeKind.DELETE, version,
            urgent=True, project_id=project_id
        )

    async def notify_batch(self, events: Iterable[ChangeEvent]) -> List[int]:
        """
        Record a batch of changes and derive tasks for them directly.

        Only the newest change per entity produces a task; every recorded
        event is marked processed.

        Returns:
            Ids of the tasks created (duplicates of live tasks are not included)
        """
        recorded = []
        for event in events:
            try:
                stored = await self.event_log.record(
                    event.entity_type, event.entity_id, event.change_kind, event.version,
                    urgent=event.urgent, project_id=event.project_id,
                    occurred_at=event.occurred_at
                )
            except Exception as e:
                self.intake_failures += 1
                logger.error(f"Failed to record batched {event}: {e}")
                continue
            self.events_recorded += 1
            recorded.append(stored)

        try:
            return await self.derive_batch(recorded)
        except Exception as e:
            self.intake_failures += 1
            logger.error(f"Failed to derive tasks for a batch of {len(recorded)} events: {e}")
            return []

    # Recording and derivation

    async def record_change(
        self,
        entity_type: EntityType,
        entity_id: int,
        change_kind: ChangeKind,
        version: int,
        urgent: bool = False,
        project_id: Optional[int] = None
    ) -> ChangeEvent:
        """
        Durably record a change and route it.

        Urgent events and deletions have their task derived and processed
        right away; everything else goes through the channel.

        Raises:
            Any error from the event log write
        """
        event = await self.event_log.record(
            entity_type, entity_id, change_kind, version,
            urgent=urgent, project_id=project_id
        )
        self.events_recorded += 1

        if event.should_process_immediately:
            await self._sync_now(event)
        elif not await self.channel.offer(event):
            logger.debug(f"Channel did not take {event}; it will be replayed")

        return event

    async def derive(self, event: ChangeEvent) -> Optional[int]:
        """
        Enqueue the task for one event and mark the event processed.

        Returns:
            The new task id, or None if a live task already covers it
        """
        task_id = await self._enqueue_for(event)
        if event.event_id is not None:
            await self.event_log.mark_processed(event.event_id)
        return task_id

    async def derive_batch(self, events: List[ChangeEvent]) -> List[int]:
        """Derive tasks for the newest event per entity, deletions first"""
        if not events:
            return []

        task_ids = []
        for event in coalesce_events(events):
            task_id = await self._enqueue_for(event)
            if task_id is not None:
                task_ids.append(task_id)

        for event in events:
            if event.event_id is not None:
                await self.event_log.mark_processed(event.event_id)

        logger.debug(f"Derived {len(task_ids)} tasks from {len(events)} events")
        return task_ids

    async def _enqueue_for(self, event: ChangeEvent) -> Optional[int]:
        operation = event.operation
        target_version = None if operation == SyncOperation.DELETE else event.version
        task_id = await self.task_queue.enqueue(event.entity_type, event.entity_id, operation, target_version)
        if task_id is not None:
            self.tasks_derived += 1
        return task_id

    async def _sync_now(self, event: ChangeEvent) -> None:
        task_id = await self.derive(event)
        if task_id is None or self.processor is None:
            return

        logger.info(f"Processing {event} immediately as task #{task_id}")
        try:
            await self.processor.process_by_id(task_id)
        except Exception as e:
            # The task stays in the queue; the drain or timeout sweep will pick it up
            logger.error(f"Immediate processing of task #{task_id} failed: {e}")

    async def replay_unprocessed(self, grace_seconds: float, limit: int = 100) -> int:
        """
        Derive tasks for events still unprocessed after a grace period.

        Returns:
            Number of events replayed
        """
        cutoff = datetime.now() - timedelta(seconds=grace_seconds)
        events = await self.event_log.list_unprocessed(limit=limit, older_than=cutoff)
        if not events:
            return 0

        logger.info(f"Replaying {len(events)} unprocessed change events")
        await self.derive_batch(events)
        return len(events)

    # Channel consumer

    async def consume_once(self, timeout: Optional[float] = None) -> int:
        """
        Wait for at least one event on the channel and derive tasks for
        everything currently queued.

        Returns:
            Number of events consumed
        """
        first = await self.channel.take(timeout=self.poll_timeout if timeout is None else timeout)
        if first is None:
            return 0

        batch = [first] + await self.channel.take_batch()
        await self.derive_batch(batch)
        return len(batch)

    async def start(self) -> None:
        """Start the background channel consumer"""
        if self._consumer is not None and not self._consumer.done():
            return
        self._stopping.clear()
        self._consumer = asyncio.create_task(self._consume_loop())
        logger.info("Started change intake consumer")

    async def stop(self) -> None:
        self._stopping.set()
        if self._consumer is not None and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                logger.debug("Intake consumer cancelled")
        self._consumer = None
        logger.info("Stopped change intake consumer")

    async def _consume_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.consume_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Events stay unprocessed in the log and are replayed later
                self.intake_failures += 1
                logger.error(f"Intake consumer failed to derive tasks: {e}")
                await asyncio.sleep(self.poll_timeout)

    def get_stats(self) -> Dict[str, int]:
        return {
            "events_recorded": self.events_recorded,
            "tasks_derived": self.tasks_derived,
            "intake_failures": self.intake_failures,
            "channel_size": len(self.channel)
        }
