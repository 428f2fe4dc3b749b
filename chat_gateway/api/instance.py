"""Inference instance status and start/stop endpoints."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chat_gateway.api.dependencies import admit, get_instance_service
from chat_gateway.core.exceptions import GatewayError
from chat_gateway.core.limits import AdmissionResult
from chat_gateway.services.instance_service import InstanceService

router = APIRouter(prefix="/api/instance", tags=["instance"])


class InstanceActionRequest(BaseModel):
    action: str = Field(default="")


@router.get("")
async def instance_status(
    _admission: AdmissionResult = Depends(admit("instance")),
    service: InstanceService = Depends(get_instance_service),
) -> Dict[str, Any]:
    """Instance state plus Ollama readiness. Polling this counts as UI activity."""
    return await service.get_status()


@router.post("")
async def instance_action(
    body: InstanceActionRequest,
    _admission: AdmissionResult = Depends(admit("instance")),
    service: InstanceService = Depends(get_instance_service),
) -> Dict[str, Any]:
    if body.action == "start":
        await service.start()
    elif body.action == "stop":
        await service.stop()
    else:
        raise GatewayError(
            'Invalid action. Must be "start" or "stop"',
            status_code=400,
            code="E4000",
        )
    return {"success": True, "action": body.action}
