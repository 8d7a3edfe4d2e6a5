"""
Change Event Channel.

Bounded, priority-ordered in-process handoff between recording a change
and deriving its sync task. Events are already durable when they enter the
channel, so a full channel drops the handoff, not the event: the replay job
later picks up anything left unprocessed in the log.
"""

import asyncio
import heapq
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from .events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


@dataclass
class ChannelMetrics:
    """Metrics for monitoring the intake channel"""
    total_events_offered: int = 0
    total_events_accepted: int = 0
    total_events_rejected: int = 0
    total_events_taken: int = 0
    total_batches: int = 0
    max_size_reached: int = 0
    events_by_kind: Dict[ChangeKind, int] = field(default_factory=lambda: defaultdict(int))
    avg_wait_seconds: float = 0.0


class ChangeEventChannel:
    """
    Asynchronous priority channel for recorded change events.

    - Deletions first, then updates, then creations; FIFO within a priority
    - Bounded size; ``offer`` returns False instead of blocking when full
    - Deduplicated by event id
    """

    def __init__(self, max_size: int = 1000, max_batch_size: int = 50):
        """
        Args:
            max_size: Maximum number of events held
            max_batch_size: Default maximum events returned by take_batch
        """
        self.max_size = max_size
        self.max_batch_size = max_batch_size

        self._heap: List[ChangeEvent] = []
        self._lock = asyncio.Lock()
        self._event_ids: Set[int] = set()
        self._waiters: List[asyncio.Future] = []

        self.metrics = ChannelMetrics()
        self._start_time = datetime.now()
        self._running = False

        logger.info(f"Initialized ChangeEventChannel with max_size={max_size}, max_batch_size={max_batch_size}")

    @property
    def is_active(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        """Stop accepting events and wake any waiting consumers"""
        self._running = False

        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._waiters.clear()
        logger.info(f"Stopped ChangeEventChannel ({len(self._heap)} events left for replay)")

    async def offer(self, event: ChangeEvent) -> bool:
        """
        Hand an event to the channel without blocking.

        Returns:
            True if accepted; False if the channel is stopped, full, or the
            event is already queued
        """
        self.metrics.total_events_offered += 1

        if not self._running:
            self.metrics.total_events_rejected += 1
            return False

        async with self._lock:
            if len(self._heap) >= self.max_size:
                logger.warning(f"Channel full ({len(self._heap)} events), leaving {event} for replay")
                self.metrics.total_events_rejected += 1
                return False

            if event.event_id is not None and event.event_id in self._event_ids:
                logger.debug(f"Dropping duplicate handoff for event #{event.event_id}")
                self.metrics.total_events_rejected += 1
                return False

            heapq.heappush(self._heap, event)
            if event.event_id is not None:
                self._event_ids.add(event.event_id)

            self.metrics.total_events_accepted += 1
            self.metrics.events_by_kind[event.change_kind] += 1
            self.metrics.max_size_reached = max(self.metrics.max_size_reached, len(self._heap))

            # Wake up one waiting consumer
            while self._waiters:
                waiter = self._waiters.pop(0)
                if not waiter.done():
                    waiter.set_result(None)
                    break

            logger.debug(f"Accepted {event} (channel size: {len(self._heap)})")
            return True

    async def take(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Remove and return the highest priority event.

        Args:
            timeout: Seconds to wait when empty; None waits indefinitely, 0 never waits

        Returns:
            The event, or None on timeout or shutdown
        """
        async with self._lock:
            event = self._pop()
            if event is not None:
                return event

        if timeout is not None and timeout <= 0:
            return None

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            if timeout is not None:
                await asyncio.wait_for(waiter, timeout=timeout)
            else:
                await waiter
        except asyncio.TimeoutError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            return None
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

        async with self._lock:
            return self._pop()

    async def take_batch(self, max_size: Optional[int] = None) -> List[ChangeEvent]:
        """Remove and return up to ``max_size`` events in priority order"""
        if max_size is None:
            max_size = self.max_batch_size

        batch = []
        async with self._lock:
            while len(batch) < max_size:
                event = self._pop()
                if event is None:
                    break
                batch.append(event)

            if batch:
                self.metrics.total_batches += 1

        return batch

    def _pop(self) -> Optional[ChangeEvent]:
        """Pop the highest priority event. Must be called with the lock held."""
        if not self._heap:
            return None

        event = heapq.heappop(self._heap)
        if event.event_id is not None:
            self._event_ids.discard(event.event_id)

        self.metrics.total_events_taken += 1
        taken = self.metrics.total_events_taken
        self.metrics.avg_wait_seconds = (
            (self.metrics.avg_wait_seconds * (taken - 1) + max(event.age_seconds, 0.0)) / taken
        )
        return event

    async def size(self) -> int:
        async with self._lock:
            return len(self._heap)

    async def clear(self) -> int:
        """Drop all queued handoffs; the events stay unprocessed in the log"""
        async with self._lock:
            count = len(self._heap)
            self._heap.clear()
            self._event_ids.clear()
            return count

    def get_metrics(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self._start_time).total_seconds()
        return {
            "current_size": len(self._heap),
            "max_size_reached": self.metrics.max_size_reached,
            "events_offered": self.metrics.total_events_offered,
            "events_accepted": self.metrics.total_events_accepted,
            "events_rejected": self.metrics.total_events_rejected,
            "events_taken": self.metrics.total_events_taken,
            "batches": self.metrics.total_batches,
            "events_by_kind": {kind.value: n for kind, n in self.metrics.events_by_kind.items()},
            "avg_wait_seconds": self.metrics.avg_wait_seconds,
            "uptime_seconds": uptime,
            "utilization": len(self._heap) / self.max_size
        }

    def __len__(self) -> int:
        return len(self._heap)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
