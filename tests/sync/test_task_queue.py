"""
Tests for the sync task queue: dedup, claiming, failure accounting,
timeout recovery and the retry ceiling.
"""

from datetime import datetime, timedelta

import pytest

from core.models.entities import EntityType
from core.sync.events import SyncOperation, TaskStatus
from core.sync.task_queue import TIMEOUT_RESET_MESSAGE, SyncTaskQueue


class TestEnqueue:
    """Idempotent task creation"""

    @pytest.mark.asyncio
    async def test_enqueue_creates_pending_task(self, database):
        queue = SyncTaskQueue(database)

        task_id = await queue.enqueue(EntityType.CHAPTER, 42, SyncOperation.UPDATE, 3)

        task = await queue.get(task_id)
        assert task.status == TaskStatus.PENDING
        assert task.retry_count == 0
        assert task.target_version == 3
        assert task.operation == SyncOperation.UPDATE

    @pytest.mark.asyncio
    async def test_duplicate_live_task_is_skipped(self, database):
        queue = SyncTaskQueue(database)

        first = await queue.enqueue(EntityType.CHAPTER, 42, SyncOperation.UPDATE, 3)
        second = await queue.enqueue(EntityType.CHAPTER, 42, SyncOperation.UPDATE, 3)

        assert first is not None
        assert second is None
        counts = await queue.count_by_status()
        assert counts[TaskStatus.PENDING] == 1

    @pytest.mark.asyncio
    async def test_different_versions_are_distinct(self, database):
        queue = SyncTaskQueue(database)

        assert await queue.enqueue(EntityType.CHAPTER, 42, SyncOperation.UPDATE, 3) is not None
        assert await queue.enqueue(EntityType.CHAPTER, 42, SyncOperation.UPDATE, 4) is not None

    @pytest.mark.asyncio
    async def test_delete_tasks_dedup_without_version(self, database):
        queue = SyncTaskQueue(database)

        assert await queue.enqueue(EntityType.PLOT, 7, SyncOperation.DELETE) is not None
        assert await queue.enqueue(EntityType.PLOT, 7, SyncOperation.DELETE) is None

    @pytest.mark.asyncio
    async def test_failed_task_still_blocks_duplicates(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await queue.claim(task_id)
        await queue.fail(task_id, "boom")

        assert await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2) is None

    @pytest.mark.asyncio
    async def test_completed_task_allows_new_one(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await queue.claim(task_id)
        await queue.complete(task_id)

        assert await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2) is not None


class TestClaiming:
    """Atomic claim and completion"""

    @pytest.mark.asyncio
    async def test_claim_batch_oldest_first(self, database):
        queue = SyncTaskQueue(database)
        ids = [await queue.enqueue(EntityType.CHAPTER, i, SyncOperation.INDEX, 1) for i in range(5)]

        claimed = await queue.claim_batch(3)

        assert [t.task_id for t in claimed] == ids[:3]
        assert all(t.status == TaskStatus.PROCESSING for t in claimed)
        assert all(t.claimed_at is not None for t in claimed)

        rest = await queue.claim_batch(10)
        assert [t.task_id for t in rest] == ids[3:]
        assert await queue.claim_batch(10) == []

    @pytest.mark.asyncio
    async def test_claim_single_task_only_once(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.WORLD, 1, SyncOperation.INDEX, 1)

        assert await queue.claim(task_id) is not None
        assert await queue.claim(task_id) is None

    @pytest.mark.asyncio
    async def test_complete_requires_processing(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.WORLD, 1, SyncOperation.INDEX, 1)

        assert await queue.complete(task_id) is False

        await queue.claim(task_id)
        assert await queue.complete(task_id) is True

        task = await queue.get(task_id)
        assert task.status == TaskStatus.COMPLETED
        assert task.processed_at is not None

    @pytest.mark.asyncio
    async def test_fail_records_error_and_counts_retry(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHARACTER, 3, SyncOperation.UPDATE, 2)
        await queue.claim(task_id)

        assert await queue.fail(task_id, "index unavailable") is True

        task = await queue.get(task_id)
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 1
        assert task.error_message == "index unavailable"


class TestRecovery:
    """Timeout sweep, re-arming and abandonment"""

    @pytest.mark.asyncio
    async def test_reset_timed_out(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await queue.claim(task_id)

        # Not yet timed out
        assert await queue.reset_timed_out(timedelta(hours=2)) == 0

        later = datetime.now() + timedelta(hours=3)
        assert await queue.reset_timed_out(timedelta(hours=2), now=later) == 1

        task = await queue.get(task_id)
        assert task.status == TaskStatus.PENDING
        assert task.claimed_at is None
        assert task.error_message == TIMEOUT_RESET_MESSAGE
        assert task.retry_count == 0

    async def _fail_times(self, queue, task_id, times):
        for attempt in range(times):
            await queue.claim(task_id)
            await queue.fail(task_id, "boom")
            if attempt < times - 1:
                await queue.rearm_failed(max_retries=100)

    @pytest.mark.asyncio
    async def test_rearm_within_ceiling(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await self._fail_times(queue, task_id, 3)

        assert (await queue.get(task_id)).retry_count == 3
        assert await queue.rearm_failed(max_retries=3) == 1
        assert (await queue.get(task_id)).status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_abandon_past_ceiling(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await self._fail_times(queue, task_id, 4)

        assert await queue.rearm_failed(max_retries=3) == 0
        abandoned = await queue.abandon_exhausted(max_retries=3)

        assert [t.task_id for t in abandoned] == [task_id]
        task = await queue.get(task_id)
        assert task.status == TaskStatus.ABANDONED
        assert task.status.is_terminal
        assert task.error_message == "boom"

    @pytest.mark.asyncio
    async def test_rearm_respects_backoff(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await queue.claim(task_id)
        await queue.fail(task_id, "boom")

        assert await queue.rearm_failed(max_retries=3, backoff=lambda retries: 60.0) == 0

        later = datetime.now() + timedelta(minutes=2)
        assert await queue.rearm_failed(max_retries=3, backoff=lambda retries: 60.0, now=later) == 1

    @pytest.mark.asyncio
    async def test_requeue_abandoned_resets_retries(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await self._fail_times(queue, task_id, 2)
        await queue.abandon_exhausted(max_retries=1)

        assert await queue.requeue(task_id) is True

        task = await queue.get(task_id)
        assert task.status == TaskStatus.PENDING
        assert task.retry_count == 0
        assert task.error_message is None

    @pytest.mark.asyncio
    async def test_requeue_refused_when_live_duplicate_exists(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        await self._fail_times(queue, task_id, 2)
        await queue.abandon_exhausted(max_retries=1)

        live_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        assert live_id is not None

        assert await queue.requeue(task_id) is False
        assert (await queue.get(task_id)).status == TaskStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_requeue_pending_task_is_refused(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        assert await queue.requeue(task_id) is False


class TestQueries:

    @pytest.mark.asyncio
    async def test_delete_completed_older_than(self, database):
        queue = SyncTaskQueue(database)
        done = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        pending = await queue.enqueue(EntityType.CHAPTER, 2, SyncOperation.UPDATE, 2)
        await queue.claim(done)
        await queue.complete(done)

        deleted = await queue.delete_completed_older_than(datetime.now() + timedelta(seconds=1))

        assert deleted == 1
        assert await queue.get(done) is None
        assert await queue.get(pending) is not None

    @pytest.mark.asyncio
    async def test_find_live_and_list(self, database):
        queue = SyncTaskQueue(database)
        task_id = await queue.enqueue(EntityType.CHAPTER, 1, SyncOperation.UPDATE, 2)
        delete_id = await queue.enqueue(EntityType.CHAPTER, 5, SyncOperation.DELETE)

        assert (await queue.find_live(EntityType.CHAPTER, 1, 2)).task_id == task_id
        assert (await queue.find_live(EntityType.CHAPTER, 5)).task_id == delete_id
        assert await queue.find_live(EntityType.CHAPTER, 1, 3) is None

        pending = await queue.list_tasks(status=TaskStatus.PENDING)
        assert {t.task_id for t in pending} == {task_id, delete_id}
        assert await queue.list_tasks(status=TaskStatus.COMPLETED) == []
