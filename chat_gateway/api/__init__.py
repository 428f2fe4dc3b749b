"""API routers."""

from chat_gateway.api.admin import router as admin_router
from chat_gateway.api.costs import router as costs_router
from chat_gateway.api.health import router as health_router
from chat_gateway.api.instance import router as instance_router
from chat_gateway.api.models import router as models_router
from chat_gateway.api.ratelimit import router as ratelimit_router

__all__ = [
    "admin_router",
    "costs_router",
    "health_router",
    "instance_router",
    "models_router",
    "ratelimit_router",
]
