"""Shared route dependencies: admission control and service lookup."""

from typing import Callable

from fastapi import Depends, Request, Response

from chat_gateway.auth.dependencies import get_admin_user, get_current_user
from chat_gateway.auth.identity import AuthUser
from chat_gateway.core.exceptions import RateLimitExceededError
from chat_gateway.core.limits import AdmissionResult
from chat_gateway.services.admission_service import AdmissionController
from chat_gateway.services.cost_service import CostReporter
from chat_gateway.services.instance_service import InstanceService
from chat_gateway.services.lifecycle_service import LifecycleScheduler
from chat_gateway.services.model_service import ModelService


def get_admission_controller(request: Request) -> AdmissionController:
    return request.app.state.admission_controller


def get_instance_service(request: Request) -> InstanceService:
    return request.app.state.instance_service


def get_lifecycle_scheduler(request: Request) -> LifecycleScheduler:
    return request.app.state.lifecycle_scheduler


def get_model_service(request: Request) -> ModelService:
    return request.app.state.model_service


def get_cost_reporter(request: Request) -> CostReporter:
    return request.app.state.cost_reporter


def _admission_dependency(operation: str, user_dependency: Callable) -> Callable:
    async def dependency(
        response: Response,
        user: AuthUser = Depends(user_dependency),
        controller: AdmissionController = Depends(get_admission_controller),
    ) -> AdmissionResult:
        result = await controller.check_admission(user.sub, operation)
        if not result.allowed:
            raise RateLimitExceededError(result, now=controller.now())
        for name, value in result.headers().items():
            response.headers[name] = value
        return result

    dependency.__name__ = f"admit_{operation}"
    return dependency


def admit(operation: str) -> Callable:
    """Authenticate the caller, then count the request against ``operation``."""
    return _admission_dependency(operation, get_current_user)


def admit_admin(operation: str = "admin") -> Callable:
    """Like :func:`admit` but requires an admin caller."""
    return _admission_dependency(operation, get_admin_user)
