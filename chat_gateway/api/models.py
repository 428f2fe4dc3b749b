"""Model management on the inference instance."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from chat_gateway.api.dependencies import admit, get_model_service
from chat_gateway.core.exceptions import GatewayError
from chat_gateway.core.limits import AdmissionResult
from chat_gateway.services.model_service import ModelService

router = APIRouter(prefix="/api/models", tags=["models"])


class ModelNameRequest(BaseModel):
    name: str = Field(default="")


def _require_name(body: ModelNameRequest) -> str:
    name = body.name.strip()
    if not name:
        raise GatewayError("Missing required field: name", status_code=400, code="E4000")
    return name


@router.get("")
async def list_models(
    _admission: AdmissionResult = Depends(admit("models")),
    service: ModelService = Depends(get_model_service),
) -> Dict[str, Any]:
    return await service.list_models()


@router.post("")
async def pull_model(
    body: ModelNameRequest,
    _admission: AdmissionResult = Depends(admit("models")),
    service: ModelService = Depends(get_model_service),
) -> Dict[str, Any]:
    """Pull a model; the response is sent once the download completes."""
    return await service.pull_model(_require_name(body))


@router.delete("")
async def delete_model(
    body: ModelNameRequest,
    _admission: AdmissionResult = Depends(admit("models")),
    service: ModelService = Depends(get_model_service),
) -> Dict[str, Any]:
    await service.delete_model(_require_name(body))
    return {"success": True}
