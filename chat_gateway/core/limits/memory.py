"""In-memory counter and record store.

Per-process only: use it for a single worker, local development and
tests. For multi-worker deployments use the Redis or DynamoDB stores.
"""

from __future__ import annotations

import copy
import time
from asyncio import Lock
from typing import Any, Callable

from chat_gateway.core.limits import CounterStore, RecordStore


class InMemoryCounterStore(CounterStore, RecordStore):
    """Dictionary-backed fixed-window counters plus single records.

    Counters carry their own expiry. An expired counter is treated as
    absent even before it is purged, matching the TTL semantics of the
    distributed stores.
    """

    def __init__(self, clock: Callable[[], float] = time.time, purge_every: int = 1024):
        """Initialize the store.

        Args:
            clock: Wall-clock source in epoch seconds.
            purge_every: Sweep expired counters after this many increments.
        """
        self._clock = clock
        self._purge_every = max(1, purge_every)
        self._counters: dict[str, tuple[int, int]] = {}
        self._records: dict[str, dict[str, Any]] = {}
        self._increments = 0
        self._lock = Lock()

    async def increment(self, key: str, expires_at: int) -> int:
        now = self._clock()
        async with self._lock:
            count, current_expiry = self._counters.get(key, (0, 0))
            if count and now > current_expiry:
                count = 0
            count += 1
            self._counters[key] = (count, int(expires_at))

            self._increments += 1
            if self._increments % self._purge_every == 0:
                self._purge(now)
            return count

    async def get_count(self, key: str) -> int:
        now = self._clock()
        async with self._lock:
            count, expires_at = self._counters.get(key, (0, 0))
            if now > expires_at:
                return 0
            return count

    async def put_record(self, key: str, record: dict[str, Any]) -> None:
        async with self._lock:
            self._records[key] = copy.deepcopy(record)

    async def get_record(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def _purge(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._counters.items() if now > exp]
        for k in expired:
            del self._counters[k]
