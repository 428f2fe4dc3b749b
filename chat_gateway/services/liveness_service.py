"""UI activity heartbeat used as the autostop idle clock."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable

from chat_gateway.core.limits import RecordStore

HEARTBEAT_KEY = "system:heartbeat"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LivenessSignal:
    """Single overwrite-only heartbeat record in the shared store."""

    def __init__(
        self,
        store: RecordStore,
        *,
        key: str = HEARTBEAT_KEY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._key = key
        self._clock = clock

    async def record_activity(self) -> datetime:
        """Overwrite the heartbeat with the current time."""
        now = self._clock()
        await self._store.put_record(self._key, {"timestamp": now.isoformat()})
        return now

    async def last_activity(self) -> datetime | None:
        """Return the last recorded activity, or None if none was ever recorded.

        Raises:
            ValueError: If the stored timestamp cannot be parsed.
        """
        record = await self._store.get_record(self._key)
        if not record or not record.get("timestamp"):
            return None
        raw = str(record["timestamp"]).replace("Z", "+00:00")
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
