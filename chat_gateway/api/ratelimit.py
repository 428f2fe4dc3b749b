"""Read-only quota status for the current caller."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Response

from chat_gateway.api.dependencies import get_admission_controller
from chat_gateway.auth.dependencies import get_current_user
from chat_gateway.auth.identity import AuthUser
from chat_gateway.services.admission_service import AdmissionController

router = APIRouter(prefix="/api/ratelimit", tags=["ratelimit"])


@router.get("/{operation}")
async def ratelimit_status(
    operation: str,
    response: Response,
    user: AuthUser = Depends(get_current_user),
    controller: AdmissionController = Depends(get_admission_controller),
) -> Dict[str, Any]:
    """Report remaining quota for ``operation`` without consuming any."""
    result = await controller.get_status(user.sub, operation)
    for name, value in result.headers().items():
        response.headers[name] = value
    return {
        "operation": operation,
        "allowed": result.allowed,
        "limit": result.limit,
        "remaining": result.remaining,
        "resetAt": result.reset_at,
    }
