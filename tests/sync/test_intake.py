"""
Tests for change intake: fire-and-forget notifications, task derivation,
urgent processing, batch coalescing and replay.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from core.models.entities import EntityType
from core.sync.event_log import ChangeEventLog
from core.sync.events import ChangeEvent, ChangeKind, SyncOperation, TaskStatus
from core.sync.intake import ChangeIntake, coalesce_events, content_changed
from core.sync.pipeline import VectorizationPipeline
from core.sync.processor import TaskProcessor
from core.sync.queue import ChangeEventChannel
from core.sync.retry import RetryPolicy
from core.sync.task_queue import SyncTaskQueue


async def _no_sleep(delay):
    return None


@pytest.fixture
def components(database, index_store, version_store):
    event_log = ChangeEventLog(database)
    task_queue = SyncTaskQueue(database)
    channel = ChangeEventChannel(max_size=10)
    pipeline = VectorizationPipeline(index_store, version_store)
    processor = TaskProcessor(task_queue, pipeline, RetryPolicy(sleep=_no_sleep))
    intake = ChangeIntake(event_log, task_queue, channel, processor, poll_timeout=0.05)
    return intake, event_log, task_queue, channel


class TestHelpers:

    def test_content_changed(self):
        assert content_changed("a", "b")
        assert not content_changed("same", "same")
        assert not content_changed(None, "")

    def test_coalesce_keeps_newest_per_entity_and_orders_by_priority(self):
        events = [
            ChangeEvent(event_id=1, entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=2),
            ChangeEvent(event_id=2, entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=4),
            ChangeEvent(event_id=3, entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=3),
            ChangeEvent(event_id=4, entity_type="plot", entity_id=2, change_kind=ChangeKind.CREATE, version=1),
            ChangeEvent(event_id=5, entity_type="world", entity_id=3, change_kind=ChangeKind.DELETE, version=2),
        ]

        result = coalesce_events(events)

        assert [e.event_id for e in result] == [5, 2, 4]

    def test_coalesce_prefers_delete_on_version_tie(self):
        update = ChangeEvent(event_id=1, entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=2)
        delete = ChangeEvent(event_id=2, entity_type="chapter", entity_id=1, change_kind=ChangeKind.DELETE, version=2)

        assert coalesce_events([delete, update]) == [delete]

    def test_coalesce_prefers_delete_without_known_version(self):
        update = ChangeEvent(event_id=1, entity_type="chapter", entity_id=7, change_kind=ChangeKind.UPDATE, version=2)
        delete = ChangeEvent(event_id=2, entity_type="chapter", entity_id=7, change_kind=ChangeKind.DELETE, version=0)

        assert coalesce_events([update, delete]) == [delete]
        assert coalesce_events([delete, update]) == [delete]


class TestNotifications:

    @pytest.mark.asyncio
    async def test_update_goes_through_channel(self, components):
        intake, event_log, task_queue, channel = components
        await channel.start()

        event = await intake.notify_update(EntityType.CHAPTER, 1, version=2, project_id=1)

        assert event is not None
        assert len(channel) == 1
        assert await event_log.count_unprocessed() == 1

        assert await intake.consume_once(timeout=0) == 1
        assert await event_log.count_unprocessed() == 0
        task = await task_queue.find_live(EntityType.CHAPTER, 1, 2)
        assert task.operation == SyncOperation.UPDATE
        assert task.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_create_starts_at_version_one(self, components):
        intake, event_log, task_queue, channel = components
        await channel.start()

        event = await intake.notify_create(EntityType.PLOT, 4, project_id=2)
        await intake.consume_once(timeout=0)

        assert event.version == 1
        task = await task_queue.find_live(EntityType.PLOT, 4, 1)
        assert task.operation == SyncOperation.INDEX

    @pytest.mark.asyncio
    async def test_unchanged_content_is_skipped(self, components):
        intake, event_log, _, channel = components
        await channel.start()

        event = await intake.notify_update(
            EntityType.CHAPTER, 1, version=2, old_content="same", new_content="same"
        )

        assert event is None
        assert await event_log.count_unprocessed() == 0

    @pytest.mark.asyncio
    async def test_duplicate_notifications_create_one_task(self, components):
        intake, _, task_queue, channel = components
        await channel.start()

        await intake.notify_update(EntityType.CHAPTER, 1, version=2)
        await intake.notify_update(EntityType.CHAPTER, 1, version=2)
        await intake.consume_once(timeout=0)

        counts = await task_queue.count_by_status()
        assert counts[TaskStatus.PENDING] == 1

    @pytest.mark.asyncio
    async def test_delete_is_processed_immediately(self, components, index_store, version_store):
        intake, event_log, task_queue, channel = components
        await channel.start()
        version_store.put(EntityType.CHARACTER, 8, "Captain Mara")
        await intake.processor.pipeline.sync(EntityType.CHARACTER, 8, SyncOperation.INDEX, 1)
        assert await index_store.count({"entity_id": 8}) == 1

        version_store.remove(EntityType.CHARACTER, 8)
        event = await intake.notify_delete(EntityType.CHARACTER, 8, version=1)

        assert event.urgent is True
        assert len(channel) == 0
        assert await index_store.count({"entity_id": 8}) == 0
        tasks = await task_queue.list_tasks(status=TaskStatus.COMPLETED)
        assert [(t.operation, t.target_version) for t in tasks] == [(SyncOperation.DELETE, None)]
        assert await event_log.count_unprocessed() == 0

    @pytest.mark.asyncio
    async def test_urgent_update_is_processed_immediately(self, components, index_store, version_store):
        intake, _, task_queue, channel = components
        await channel.start()
        version_store.put(EntityType.CHAPTER, 1, "The storm")

        await intake.notify_update(EntityType.CHAPTER, 1, version=1, urgent=True)

        assert await index_store.newest_active_version(EntityType.CHAPTER, 1) == 1
        counts = await task_queue.count_by_status()
        assert counts[TaskStatus.COMPLETED] == 1

    @pytest.mark.asyncio
    async def test_recording_failure_never_raises(self, components):
        intake, event_log, _, channel = components
        intake.event_log = AsyncMock(spec=ChangeEventLog)
        intake.event_log.record.side_effect = RuntimeError("database is locked")

        event = await intake.notify_update(EntityType.CHAPTER, 1, version=2)

        assert event is None
        assert intake.get_stats()["intake_failures"] == 1

    @pytest.mark.asyncio
    async def test_full_channel_leaves_event_for_replay(self, components):
        intake, event_log, task_queue, channel = components
        # Channel never started, so every handoff is refused

        event = await intake.notify_update(EntityType.CHAPTER, 1, version=2)

        assert event is not None
        assert await event_log.count_unprocessed() == 1
        assert await task_queue.find_live(EntityType.CHAPTER, 1, 2) is None


class TestBatchAndReplay:

    @pytest.mark.asyncio
    async def test_notify_batch(self, components):
        intake, event_log, task_queue, _ = components
        events = [
            ChangeEvent(entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=2),
            ChangeEvent(entity_type="chapter", entity_id=1, change_kind=ChangeKind.UPDATE, version=3),
            ChangeEvent(entity_type="plot", entity_id=5, change_kind=ChangeKind.DELETE, version=1),
        ]

        task_ids = await intake.notify_batch(events)

        assert len(task_ids) == 2
        first = await task_queue.get(task_ids[0])
        assert first.operation == SyncOperation.DELETE
        assert await task_queue.find_live(EntityType.CHAPTER, 1, 3) is not None
        assert await task_queue.find_live(EntityType.CHAPTER, 1, 2) is None
        assert await event_log.count_unprocessed() == 0

    @pytest.mark.asyncio
    async def test_replay_unprocessed_after_grace(self, components):
        intake, event_log, task_queue, _ = components
        await event_log.record(
            EntityType.CHAPTER, 1, ChangeKind.UPDATE, 2,
            occurred_at=datetime.now() - timedelta(minutes=5)
        )
        await event_log.record(EntityType.CHAPTER, 2, ChangeKind.UPDATE, 2)

        replayed = await intake.replay_unprocessed(grace_seconds=30)

        assert replayed == 1
        assert await task_queue.find_live(EntityType.CHAPTER, 1, 2) is not None
        assert await task_queue.find_live(EntityType.CHAPTER, 2, 2) is None
        assert await event_log.count_unprocessed() == 1

    @pytest.mark.asyncio
    async def test_replay_with_live_task_only_marks_processed(self, components):
        intake, event_log, task_queue, _ = components
        await task_queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await event_log.record(
            EntityType.CHAPTER, 1, ChangeKind.UPDATE, 2,
            occurred_at=datetime.now() - timedelta(minutes=5)
        )

        assert await intake.replay_unprocessed(grace_seconds=30) == 1
        counts = await task_queue.count_by_status()
        assert counts[TaskStatus.PENDING] == 1
        assert await event_log.count_unprocessed() == 0

    @pytest.mark.asyncio
    async def test_background_consumer(self, components):
        intake, event_log, task_queue, channel = components
        await channel.start()
        await intake.start()
        try:
            await intake.notify_update(EntityType.CHAPTER, 1, version=2)
            for _ in range(50):
                if await task_queue.find_live(EntityType.CHAPTER, 1, 2):
                    break
                await asyncio.sleep(0.02)
        finally:
            await intake.stop()
            await channel.stop()

        assert await task_queue.find_live(EntityType.CHAPTER, 1, 2) is not None
