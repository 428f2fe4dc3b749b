"""Per-identity, per-operation admission control.

Fixed, clock-aligned windows backed by an atomic counter in the shared
store. Every check increments the counter, denied ones included, so a
caller hammering an exhausted quota keeps paying for it.

Store failures fail OPEN: the request is admitted with the full quota
reported and a warning is logged. Admission control sits behind
authentication, which fails closed; a broken counter store must not take
the chat service down with it. Do not flip this to fail-closed.
"""

from __future__ import annotations

import time
from typing import Callable

from chat_gateway.core.limits import AdmissionResult, CounterStore, QuotaPolicy, QuotaTable
from chat_gateway.core.logging import get_logger

logger = get_logger(__name__)


def window_start(now: float, window_seconds: int) -> int:
    """Start of the fixed window containing ``now``."""
    return (int(now) // window_seconds) * window_seconds


def counter_key(identity: str, operation: str, start: int) -> str:
    return f"ratelimit:{identity}:{operation}:{start}"


class AdmissionController:
    """Decide whether a caller may run an operation in the current window."""

    def __init__(
        self,
        store: CounterStore,
        quotas: QuotaTable,
        *,
        grace_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the controller.

        Args:
            store: Counter store providing atomic increment-and-return.
            quotas: Immutable per-operation quota table.
            grace_seconds: Extra counter lifetime past the window end. Raised
                to at least one window length per operation.
            clock: Wall-clock source in epoch seconds.
        """
        self._store = store
        self._quotas = quotas
        self._grace_seconds = max(0, grace_seconds)
        self._clock = clock

    @property
    def quotas(self) -> QuotaTable:
        return self._quotas

    def now(self) -> float:
        """Current time on the controller's clock."""
        return self._clock()

    def _window(self, operation: str, now: float) -> tuple[QuotaPolicy, int, int]:
        policy = self._quotas.for_operation(operation)
        start = window_start(now, policy.window_seconds)
        return policy, start, start + policy.window_seconds

    async def check_admission(self, identity: str, operation: str) -> AdmissionResult:
        """Count one request against the caller's quota and decide.

        Args:
            identity: Authenticated subject id (non-empty).
            operation: Protected operation name; unknown names use the
                default quota.

        Returns:
            AdmissionResult for the current window.
        """
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now = self._clock()
        policy, start, reset_at = self._window(operation, now)
        grace = max(self._grace_seconds, policy.window_seconds)
        key = counter_key(identity, operation, start)

        try:
            count = await self._store.increment(key, expires_at=reset_at + grace)
        except Exception as exc:
            # Fail open (see module docstring).
            logger.warning(
                "Rate limit check failed, allowing request",
                data={"operation": operation, "error": f"{type(exc).__name__}: {exc}"},
            )
            return AdmissionResult(
                allowed=True,
                remaining=policy.max_requests,
                limit=policy.max_requests,
                reset_at=reset_at,
            )

        allowed = count <= policy.max_requests
        if not allowed:
            logger.info(
                "Rate limit exceeded",
                data={"operation": operation, "count": count, "limit": policy.max_requests},
            )
        return AdmissionResult(
            allowed=allowed,
            remaining=max(0, policy.max_requests - count),
            limit=policy.max_requests,
            reset_at=reset_at,
        )

    async def get_status(self, identity: str, operation: str) -> AdmissionResult:
        """Report the caller's quota for the current window without consuming it."""
        if not identity:
            raise ValueError("identity must be a non-empty string")

        now = self._clock()
        policy, start, reset_at = self._window(operation, now)

        try:
            count = await self._store.get_count(counter_key(identity, operation, start))
        except Exception as exc:
            logger.warning(
                "Rate limit status lookup failed",
                data={"operation": operation, "error": f"{type(exc).__name__}: {exc}"},
            )
            return AdmissionResult(
                allowed=True,
                remaining=policy.max_requests,
                limit=policy.max_requests,
                reset_at=reset_at,
            )

        return AdmissionResult(
            allowed=count < policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            limit=policy.max_requests,
            reset_at=reset_at,
        )
