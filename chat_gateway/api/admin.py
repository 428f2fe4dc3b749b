"""Admin-only autostop controls."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from chat_gateway.api.dependencies import admit_admin, get_lifecycle_scheduler
from chat_gateway.core.limits import AdmissionResult
from chat_gateway.core.logging import get_logger
from chat_gateway.services.lifecycle_service import LifecycleScheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/autostop")
async def autostop_status(
    _admission: AdmissionResult = Depends(admit_admin()),
    scheduler: LifecycleScheduler = Depends(get_lifecycle_scheduler),
) -> Dict[str, Any]:
    monitor = scheduler.monitor
    last = scheduler.last_outcome
    return {
        "idle_timeout_seconds": int(monitor.idle_timeout.total_seconds()),
        "hard_limit_seconds": int(monitor.hard_limit.total_seconds()),
        "scheduler_enabled": scheduler.enabled,
        "scheduler_running": scheduler.running,
        "scheduler_interval_seconds": scheduler.interval_seconds,
        "last_outcome": last.to_dict() if last else None,
    }


@router.post("/autostop/evaluate")
async def autostop_evaluate(
    _admission: AdmissionResult = Depends(admit_admin()),
    scheduler: LifecycleScheduler = Depends(get_lifecycle_scheduler),
) -> Dict[str, Any]:
    """Run one autostop evaluation now and return its outcome."""
    outcome = await scheduler.run_once()
    logger.info("Manual autostop evaluation", data=outcome.to_dict())
    return outcome.to_dict()
