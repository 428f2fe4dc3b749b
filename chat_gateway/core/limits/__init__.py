"""Counter and record store abstractions used by admission control.

This module provides pluggable backends for the fixed-window rate limiter
and the liveness heartbeat. The interfaces allow swapping between an
in-memory store (single worker, tests) and distributed stores (Redis,
DynamoDB) without changing handler logic.

Usage:
    from chat_gateway.core.limits.factory import get_stores_from_settings

    # In app lifespan:
    counter_store, record_store = get_stores_from_settings(settings)

    # In services:
    count = await counter_store.increment("ratelimit:u1:chat:1700000040", expires_at=1700000160)
    await record_store.put_record("system:heartbeat", {"timestamp": "..."})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Protocol

__all__ = [
    "AdmissionResult",
    "CounterStore",
    "QuotaPolicy",
    "QuotaTable",
    "RecordStore",
    "parse_quota",
    "parse_quota_table",
]


@dataclass(frozen=True)
class QuotaPolicy:
    """Quota for one protected operation.

    Attributes:
        max_requests: Requests admitted per window.
        window_seconds: Window length in seconds (clock-aligned).
    """
    max_requests: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.max_requests < 0:
            raise ValueError("max_requests must be >= 0")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")


@dataclass(frozen=True)
class QuotaTable:
    """Immutable per-operation quota table with a default fallback entry."""

    default: QuotaPolicy
    limits: Mapping[str, QuotaPolicy] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Freeze the mapping so one table can be shared across requests.
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))

    def for_operation(self, operation: str) -> QuotaPolicy:
        """Return the quota for ``operation``, falling back to the default."""
        return self.limits.get(operation, self.default)


@dataclass(frozen=True)
class AdmissionResult:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Requests left in the current window (floored at 0).
        limit: The quota for the operation.
        reset_at: Unix timestamp when the current window ends.
    """
    allowed: bool
    remaining: int
    limit: int
    reset_at: int

    def retry_after(self, now: float) -> int:
        """Seconds until the window resets, never less than 1."""
        return max(1, int(self.reset_at - int(now)))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class CounterStore(Protocol):
    """Protocol for rate limit counter backends.

    Implementations must increment and return the new value in a single
    atomic operation. A read followed by a write lets concurrent callers
    observe the same stale count and both be admitted.
    """

    async def increment(self, key: str, expires_at: int) -> int:
        """Atomically add 1 to ``key`` and return the new value.

        Args:
            key: Counter key (identity, operation and window start).
            expires_at: Unix timestamp after which the counter is dead.

        Returns:
            The post-increment count.
        """
        ...

    async def get_count(self, key: str) -> int:
        """Return the current count for ``key`` (0 when absent or expired)."""
        ...


class RecordStore(Protocol):
    """Protocol for single-record reads and writes under a fixed key."""

    async def put_record(self, key: str, record: dict[str, Any]) -> None:
        ...

    async def get_record(self, key: str) -> dict[str, Any] | None:
        ...


def parse_quota(value: str) -> QuotaPolicy:
    """Parse ``"max/window"`` (e.g. ``"20/60"``) into a QuotaPolicy."""
    try:
        max_part, window_part = value.strip().split("/", 1)
        return QuotaPolicy(
            max_requests=int(max_part.strip()),
            window_seconds=int(window_part.strip()),
        )
    except ValueError as exc:
        raise ValueError(f"Invalid quota '{value}': expected '<max>/<window_seconds>'") from exc


def parse_quota_table(entries: str, default: str) -> QuotaTable:
    """Parse ``"chat=20/60,models=10/60"`` plus a default entry into a QuotaTable."""
    limits: dict[str, QuotaPolicy] = {}
    for entry in (entries or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ValueError(f"Invalid rate limit entry '{entry}': expected '<operation>=<max>/<window>'")
        name, quota = entry.split("=", 1)
        name = name.strip()
        if not name:
            raise ValueError(f"Invalid rate limit entry '{entry}': empty operation name")
        limits[name] = parse_quota(quota)
    return QuotaTable(default=parse_quota(default), limits=limits)
