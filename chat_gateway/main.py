"""
Chat gateway application.

FastAPI application that fronts a remotely hosted Ollama instance:
authenticated, rate-limited instance control plus an optional in-process
autostop scheduler.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_gateway.api import (
    admin_router,
    costs_router,
    health_router,
    instance_router,
    models_router,
    ratelimit_router,
)
from chat_gateway.auth.identity import JwksIdentityVerifier
from chat_gateway.config import get_settings
from chat_gateway.core import (
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
    get_logger,
    setup_exception_handlers,
    setup_logging,
)
from chat_gateway.core.limits.factory import get_stores_from_settings
from chat_gateway.services.admission_service import AdmissionController
from chat_gateway.services.cost_service import CostReporter
from chat_gateway.services.instance_service import InstanceService, build_resource_manager
from chat_gateway.services.lifecycle_service import LifecycleMonitor, LifecycleScheduler
from chat_gateway.services.liveness_service import LivenessSignal
from chat_gateway.services.model_service import ModelService

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown.

    Anything already present on ``app.state`` is kept, so tests can inject
    fakes before the app starts.
    """
    settings = get_settings()
    state = _app.state

    setup_logging(
        level=settings.log_level,
        json_output=not settings.debug,
        log_file=settings.log_file or None,
    )
    logger.info(
        "Starting chat gateway",
        data={
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "limits_backend": settings.limits_backend,
            "autostop_scheduler_enabled": settings.autostop_scheduler_enabled,
        },
    )

    state.start_time = datetime.now(UTC)

    if not hasattr(state, "counter_store"):
        state.counter_store, state.record_store = get_stores_from_settings(settings)
        logger.info("Initialized limit stores", data={"backend": settings.limits_backend})
    if not hasattr(state, "record_store"):
        # Every bundled backend serves both roles.
        state.record_store = state.counter_store

    if not hasattr(state, "admission_controller"):
        state.admission_controller = AdmissionController(
            state.counter_store,
            settings.rate_limit_table,
            grace_seconds=settings.rate_limit_grace_seconds,
        )

    if not hasattr(state, "liveness"):
        state.liveness = LivenessSignal(state.record_store)

    if not hasattr(state, "identity_verifier"):
        if not settings.auth_domain:
            logger.warning("AUTH_DOMAIN is not set - every authenticated request will be rejected")
        state.identity_verifier = JwksIdentityVerifier.from_settings(settings)

    if not hasattr(state, "resource_manager"):
        state.resource_manager = build_resource_manager(settings)

    if not hasattr(state, "instance_service"):
        state.instance_service = InstanceService.from_settings(
            settings, state.resource_manager, state.liveness
        )

    if not hasattr(state, "model_service"):
        state.model_service = ModelService.from_settings(settings, state.instance_service)

    if not hasattr(state, "cost_reporter"):
        state.cost_reporter = CostReporter.from_settings(settings)

    if not hasattr(state, "lifecycle_scheduler"):
        monitor = LifecycleMonitor.from_settings(settings, state.resource_manager, state.liveness)
        state.lifecycle_scheduler = LifecycleScheduler(
            monitor,
            interval_seconds=settings.autostop_interval_minutes * 60,
            enabled=settings.autostop_scheduler_enabled,
        )
    await state.lifecycle_scheduler.start()

    yield

    logger.info("Shutting down chat gateway")
    await state.lifecycle_scheduler.stop()
    aclose = getattr(state.counter_store, "aclose", None)
    if aclose is not None:
        await aclose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Chat Gateway",
        description="Authenticated, rate-limited front-end for a self-stopping Ollama instance",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=settings.docs_url,
        redoc_url=None,
        openapi_url=None if settings.is_production else "/openapi.json",
    )

    # Setup exception handlers (must be before middleware)
    setup_exception_handlers(app)

    # Add middleware (order matters - last added = first executed)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )

    app.include_router(health_router)
    app.include_router(instance_router)
    app.include_router(models_router)
    app.include_router(costs_router)
    app.include_router(ratelimit_router)
    app.include_router(admin_router)

    return app


# Create application instance
app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run("chat_gateway.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
