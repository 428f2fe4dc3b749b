"""Run one autostop evaluation, for cron jobs and serverless timers.

Usage:
    python -m chat_gateway.scripts.autostop
    python -m chat_gateway.scripts.autostop --idle-minutes 10 --json-logs

Exits 0 once settings load: a failed evaluation is logged and retried on
the next tick.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import Optional, Sequence

from chat_gateway.config import get_settings
from chat_gateway.core.limits.factory import get_stores_from_settings
from chat_gateway.core.logging import get_logger, setup_logging
from chat_gateway.services.instance_service import build_resource_manager
from chat_gateway.services.lifecycle_service import (
    LifecycleMonitor,
    MonitorAction,
    MonitorOutcome,
    MonitorReason,
)
from chat_gateway.services.liveness_service import LivenessSignal

logger = get_logger(__name__)


SHARED_BACKENDS = ("redis", "dynamodb")


def _setup_failed(message: str) -> MonitorOutcome:
    logger.error("Autostop setup failed", data={"error": message})
    return MonitorOutcome(
        action=MonitorAction.NO_OP,
        reason=MonitorReason.ERROR,
        evaluated_at=datetime.now(UTC),
        error=message,
    )


async def run(idle_minutes: Optional[int] = None, hard_limit_minutes: Optional[int] = None) -> MonitorOutcome:
    settings = get_settings()
    # This process never serves UI traffic, so a private store would always
    # look idle and every run would stop the instance.
    if settings.limits_backend not in SHARED_BACKENDS:
        return _setup_failed(
            f"autostop requires a shared store (LIMITS_BACKEND=redis|dynamodb), got {settings.limits_backend!r}"
        )

    try:
        _, record_store = get_stores_from_settings(settings)
        manager = build_resource_manager(settings)
    except Exception as exc:
        return _setup_failed(str(exc))

    monitor = LifecycleMonitor.from_settings(settings, manager, LivenessSignal(record_store))
    if idle_minutes is not None:
        monitor.idle_timeout = timedelta(minutes=idle_minutes)
    if hard_limit_minutes is not None:
        monitor.hard_limit = timedelta(minutes=hard_limit_minutes)

    try:
        return await monitor.evaluate_and_act()
    finally:
        aclose = getattr(record_store, "aclose", None)
        if aclose is not None:
            await aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Stop the inference instance when idle or over its runtime limit")
    parser.add_argument("--idle-minutes", type=int, default=None, help="Override AUTOSTOP_IDLE_TIMEOUT_MINUTES")
    parser.add_argument("--hard-limit-minutes", type=int, default=None, help="Override AUTOSTOP_HARD_LIMIT_MINUTES")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=args.json_logs, log_file=settings.log_file or None)

    outcome = asyncio.run(run(args.idle_minutes, args.hard_limit_minutes))
    print(json.dumps(outcome.to_dict()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
