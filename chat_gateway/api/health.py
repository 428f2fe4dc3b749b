"""
Health check endpoints.

Liveness only: the gateway itself holds no state worth probing, and the
inference instance is expected to be stopped most of the time.
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
@router.get("/healthz")
async def healthcheck(request: Request) -> dict[str, Any]:
    """Health check endpoint used by load balancers and uptime probes."""
    start_time = getattr(request.app.state, "start_time", None)
    uptime = int((datetime.now(UTC) - start_time).total_seconds()) if start_time else None
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": uptime,
    }
