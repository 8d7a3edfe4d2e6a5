"""
Process-local registry of in-flight vectorization targets.

A best-effort fast path that stops two workers in the same process from
vectorizing the same (entity, version) concurrently. The task queue's
atomic claim remains the authoritative guard across processes.
"""

import logging
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class InFlightEntry:
    """A held key with its acquisition time"""
    key: str
    acquired_at: datetime
    ttl_seconds: Optional[float] = None

    @property
    def age_seconds(self) -> float:
        return (datetime.now() - self.acquired_at).total_seconds()

    @property
    def is_expired(self) -> bool:
        if self.ttl_seconds is None:
            return False
        return self.age_seconds > self.ttl_seconds


def inflight_key(entity_type, entity_id: int, version: Optional[int]) -> str:
    value = getattr(entity_type, "value", entity_type)
    return f"{value}:{entity_id}:{version if version is not None else '-'}"


class InFlightRegistry:
    """
    Bounded set of held keys with TTL expiry.

    Keys left behind by a cancelled worker expire after ``ttl_seconds``;
    when full, the oldest holder is evicted.
    """

    def __init__(self, max_entries: int = 10000, ttl_seconds: Optional[float] = 7200.0):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._entries: "OrderedDict[str, InFlightEntry]" = OrderedDict()

        # Statistics
        self._acquired = 0
        self._rejected = 0
        self._expired = 0
        self._evictions = 0

    def try_acquire(self, key: str) -> bool:
        """Hold ``key``; returns False if another worker already holds it"""
        self._purge_expired()

        if key in self._entries:
            self._rejected += 1
            return False

        while len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.warning(f"In-flight registry full, evicted {evicted}")

        self._entries[key] = InFlightEntry(key=key, acquired_at=datetime.now(), ttl_seconds=self.ttl_seconds)
        self._acquired += 1
        return True

    def release(self, key: str) -> None:
        self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: str) -> Iterator[bool]:
        """Context manager yielding whether the key was acquired; releases on exit"""
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)

    def is_held(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired

    def clear(self) -> None:
        self._entries.clear()

    def _purge_expired(self) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired]
        for key in expired:
            del self._entries[key]
            logger.warning(f"In-flight key {key} expired without release")
        self._expired += len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "held": len(self._entries),
            "max_entries": self.max_entries,
            "acquired": self._acquired,
            "rejected": self._rejected,
            "expired": self._expired,
            "evictions": self._evictions
        }
