"""Compute cost report."""

from typing import Dict

from fastapi import APIRouter, Depends

from chat_gateway.api.dependencies import admit, get_cost_reporter
from chat_gateway.core.limits import AdmissionResult
from chat_gateway.services.cost_service import CostReporter

router = APIRouter(prefix="/api/costs", tags=["costs"])


@router.get("")
async def get_costs(
    _admission: AdmissionResult = Depends(admit("costs")),
    reporter: CostReporter = Depends(get_cost_reporter),
) -> Dict[str, float]:
    """Yesterday's and month-to-date instance spend in USD."""
    return await reporter.get_costs()
