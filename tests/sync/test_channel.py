"""
Tests for the ChangeEventChannel: priority ordering, bounded size,
deduplication and batch handoff.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from core.sync.events import ChangeEvent, ChangeKind
from core.sync.queue import ChangeEventChannel


def make_event(event_id, kind=ChangeKind.UPDATE, entity_id=1, seconds=0):
    return ChangeEvent(
        event_id=event_id,
        entity_type="chapter",
        entity_id=entity_id,
        change_kind=kind,
        version=2,
        occurred_at=datetime(2024, 1, 1, 12, 0, 0) + timedelta(seconds=seconds)
    )


class TestChangeEventChannel:
    """Test suite for the intake channel."""

    @pytest.fixture
    def channel(self):
        return ChangeEventChannel(max_size=5, max_batch_size=3)

    @pytest.mark.asyncio
    async def test_offer_and_take(self, channel):
        await channel.start()

        assert await channel.offer(make_event(1)) is True
        assert await channel.size() == 1

        event = await channel.take(timeout=0)
        assert event.event_id == 1
        assert await channel.size() == 0

    @pytest.mark.asyncio
    async def test_rejects_when_stopped(self, channel):
        assert await channel.offer(make_event(1)) is False
        assert channel.get_metrics()["events_rejected"] == 1

    @pytest.mark.asyncio
    async def test_priority_ordering(self, channel):
        await channel.start()
        await channel.offer(make_event(1, ChangeKind.CREATE, seconds=0))
        await channel.offer(make_event(2, ChangeKind.UPDATE, seconds=1))
        await channel.offer(make_event(3, ChangeKind.DELETE, seconds=2))

        batch = await channel.take_batch(10)

        assert [e.change_kind for e in batch] == [ChangeKind.DELETE, ChangeKind.UPDATE, ChangeKind.CREATE]

    @pytest.mark.asyncio
    async def test_fifo_within_same_priority(self, channel):
        await channel.start()
        await channel.offer(make_event(2, seconds=5, entity_id=2))
        await channel.offer(make_event(1, seconds=0, entity_id=1))

        first = await channel.take(timeout=0)
        second = await channel.take(timeout=0)
        assert (first.event_id, second.event_id) == (1, 2)

    @pytest.mark.asyncio
    async def test_full_channel_rejects(self, channel):
        await channel.start()
        for i in range(5):
            assert await channel.offer(make_event(i + 1, entity_id=i)) is True

        assert await channel.offer(make_event(99)) is False
        assert len(channel) == 5
        assert channel.get_metrics()["utilization"] == 1.0

    @pytest.mark.asyncio
    async def test_duplicate_event_rejected(self, channel):
        await channel.start()
        assert await channel.offer(make_event(7)) is True
        assert await channel.offer(make_event(7)) is False

        await channel.take(timeout=0)
        assert await channel.offer(make_event(7)) is True

    @pytest.mark.asyncio
    async def test_take_batch_uses_default_size(self, channel):
        await channel.start()
        for i in range(5):
            await channel.offer(make_event(i + 1, entity_id=i))

        batch = await channel.take_batch()
        assert len(batch) == 3
        assert len(channel) == 2

    @pytest.mark.asyncio
    async def test_take_times_out_when_empty(self, channel):
        await channel.start()
        assert await channel.take(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_waiting_consumer_is_woken(self, channel):
        await channel.start()

        consumer = asyncio.create_task(channel.take(timeout=2.0))
        await asyncio.sleep(0.01)
        await channel.offer(make_event(1))

        event = await consumer
        assert event.event_id == 1

    @pytest.mark.asyncio
    async def test_stop_wakes_waiting_consumer(self, channel):
        await channel.start()

        consumer = asyncio.create_task(channel.take())
        await asyncio.sleep(0.01)
        await channel.stop()

        assert await asyncio.wait_for(consumer, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_cancelled_consumer_is_unregistered(self, channel):
        await channel.start()

        consumer = asyncio.create_task(channel.take())
        await asyncio.sleep(0.01)
        consumer.cancel()

        with pytest.raises(asyncio.CancelledError):
            await consumer
        assert await channel.offer(make_event(1)) is True
        assert (await channel.take(timeout=0)).event_id == 1

    @pytest.mark.asyncio
    async def test_clear(self, channel):
        await channel.start()
        await channel.offer(make_event(1))
        await channel.offer(make_event(2, entity_id=2))

        assert await channel.clear() == 2
        assert len(channel) == 0
        assert await channel.offer(make_event(1)) is True

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with ChangeEventChannel() as channel:
            assert channel.is_active
        assert not channel.is_active
