"""Autostop: stop the inference instance when idle or running too long."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from chat_gateway.config.settings import Settings
from chat_gateway.core.logging import get_logger
from chat_gateway.services.instance_service import ResourceManager, RunState
from chat_gateway.services.liveness_service import LivenessSignal

logger = get_logger(__name__)


class MonitorAction(str, Enum):
    STOPPED = "stopped"
    NO_OP = "no-op"


class MonitorReason(str, Enum):
    NOT_RUNNING = "not-running"
    HARD_LIMIT = "hard-limit"
    NO_ACTIVITY_RECORDED = "no-activity-recorded"
    IDLE_TIMEOUT = "idle-timeout"
    ACTIVE = "active"
    ERROR = "error"


@dataclass(frozen=True)
class MonitorOutcome:
    action: MonitorAction
    reason: MonitorReason
    evaluated_at: datetime
    run_state: Optional[str] = None
    uptime_seconds: Optional[int] = None
    idle_seconds: Optional[int] = None
    error: Optional[str] = None

    @property
    def stopped(self) -> bool:
        return self.action == MonitorAction.STOPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason.value,
            "evaluated_at": self.evaluated_at.isoformat(),
            "run_state": self.run_state,
            "uptime_seconds": self.uptime_seconds,
            "idle_seconds": self.idle_seconds,
            "error": self.error,
        }


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LifecycleMonitor:
    """Decide once per tick whether to stop the managed instance.

    Order of checks: not running -> hard limit on uptime -> missing
    heartbeat -> idle timeout. At most one stop command per evaluation,
    never retried here; the next tick is the retry.
    """

    def __init__(
        self,
        manager: ResourceManager,
        liveness: LivenessSignal,
        *,
        idle_timeout: timedelta = timedelta(minutes=15),
        hard_limit: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.manager = manager
        self.liveness = liveness
        self.idle_timeout = idle_timeout
        self.hard_limit = hard_limit
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, manager: ResourceManager, liveness: LivenessSignal
    ) -> "LifecycleMonitor":
        return cls(
            manager,
            liveness,
            idle_timeout=timedelta(minutes=settings.autostop_idle_timeout_minutes),
            hard_limit=timedelta(minutes=settings.autostop_hard_limit_minutes),
        )

    async def evaluate_and_act(self) -> MonitorOutcome:
        """Run one evaluation. Never raises."""
        now = self._clock()
        try:
            return await self._evaluate(now)
        except Exception as exc:
            logger.error(
                "Autostop evaluation failed",
                data={"error": f"{type(exc).__name__}: {exc}"},
            )
            return MonitorOutcome(
                action=MonitorAction.NO_OP,
                reason=MonitorReason.ERROR,
                evaluated_at=now,
                error=f"{type(exc).__name__}: {exc}",
            )

    async def _evaluate(self, now: datetime) -> MonitorOutcome:
        state = await self.manager.describe()
        if state.run_state != RunState.RUNNING:
            logger.info("Instance not running, nothing to do", data={"state": state.run_state.value})
            return MonitorOutcome(
                action=MonitorAction.NO_OP,
                reason=MonitorReason.NOT_RUNNING,
                evaluated_at=now,
                run_state=state.run_state.value,
            )

        uptime: Optional[timedelta] = now - state.started_at if state.started_at else None
        uptime_seconds = int(uptime.total_seconds()) if uptime is not None else None

        # Hard limit wins over recent activity.
        if uptime is not None and uptime > self.hard_limit:
            logger.info(
                "Instance exceeded hard runtime limit, stopping",
                data={"uptime_minutes": round(uptime.total_seconds() / 60)},
            )
            await self.manager.stop()
            return MonitorOutcome(
                action=MonitorAction.STOPPED,
                reason=MonitorReason.HARD_LIMIT,
                evaluated_at=now,
                run_state=state.run_state.value,
                uptime_seconds=uptime_seconds,
            )

        last_activity = await self.liveness.last_activity()
        if last_activity is None:
            logger.info("No activity ever recorded, stopping idle instance")
            await self.manager.stop()
            return MonitorOutcome(
                action=MonitorAction.STOPPED,
                reason=MonitorReason.NO_ACTIVITY_RECORDED,
                evaluated_at=now,
                run_state=state.run_state.value,
                uptime_seconds=uptime_seconds,
            )

        idle = now - last_activity
        idle_seconds = int(idle.total_seconds())
        if idle > self.idle_timeout:
            logger.info(
                "Instance idle past timeout, stopping",
                data={"idle_minutes": round(idle.total_seconds() / 60)},
            )
            await self.manager.stop()
            return MonitorOutcome(
                action=MonitorAction.STOPPED,
                reason=MonitorReason.IDLE_TIMEOUT,
                evaluated_at=now,
                run_state=state.run_state.value,
                uptime_seconds=uptime_seconds,
                idle_seconds=idle_seconds,
            )

        logger.info(
            "Instance active",
            data={"idle_seconds": idle_seconds, "uptime_seconds": uptime_seconds},
        )
        return MonitorOutcome(
            action=MonitorAction.NO_OP,
            reason=MonitorReason.ACTIVE,
            evaluated_at=now,
            run_state=state.run_state.value,
            uptime_seconds=uptime_seconds,
            idle_seconds=idle_seconds,
        )


class LifecycleScheduler:
    """Optional in-process scheduler that runs the monitor on a fixed interval."""

    def __init__(self, monitor: LifecycleMonitor, interval_seconds: int, enabled: bool = True):
        self.monitor = monitor
        self.interval_seconds = max(1, int(interval_seconds))
        self.enabled = enabled
        self.last_outcome: Optional[MonitorOutcome] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        # Manual evaluations and scheduled ticks never overlap.
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return bool(self._task and not self._task.done())

    async def start(self) -> None:
        if not self.enabled:
            return
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="autostop-scheduler")
        logger.info("Autostop scheduler started", data={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Autostop scheduler stopped")

    async def run_once(self) -> MonitorOutcome:
        async with self._lock:
            outcome = await self.monitor.evaluate_and_act()
            self.last_outcome = outcome
            return outcome

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Autostop scheduler iteration failed", data={"error": str(exc)})
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
