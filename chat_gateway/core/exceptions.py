"""Exception handlers for FastAPI application."""

import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from chat_gateway.core.limits import AdmissionResult
from chat_gateway.core.logging import get_logger, request_context

logger = get_logger(__name__)


class GatewayError(Exception):
    """Base exception for the chat gateway."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: str = "E5000",
        details: Optional[dict] = None,
        headers: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(message)


class AuthenticationError(GatewayError):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            code="E2000",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(GatewayError):
    """Authorization failed."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, code="E2001")


class NotFoundError(GatewayError):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, code="E4040")


class InstanceError(GatewayError):
    """Managed inference instance error."""

    def __init__(self, message: str, instance_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="E3000",
            details={"instance_id": instance_id} if instance_id else {},
        )


class OllamaError(GatewayError):
    """The Ollama API on the managed instance returned an error."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(
            message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code="E3001",
            details={"upstream_status": upstream_status} if upstream_status else {},
        )


class CostReportError(GatewayError):
    """Cost Explorer could not produce a report."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_502_BAD_GATEWAY, code="E3002")


class RateLimitExceededError(GatewayError):
    """Caller exceeded the quota for an operation."""

    def __init__(self, result: AdmissionResult, now: Optional[float] = None):
        retry_after = result.retry_after(time.time() if now is None else now)
        headers = result.headers()
        headers["Retry-After"] = str(retry_after)
        super().__init__(
            f"Too many requests. Please try again in {retry_after} seconds.",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            code="E1005",
            details={
                "limit": result.limit,
                "remaining": result.remaining,
                "resetAt": result.reset_at,
            },
            headers=headers,
        )
        self.result = result
        self.retry_after = retry_after


def _request_id() -> Optional[str]:
    return request_context.get().get("request_id") if request_context.get() else None


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(
        request: Request, exc: GatewayError
    ) -> JSONResponse:
        """Handle gateway-specific exceptions."""
        # Client errors (quota, auth) are expected traffic, not failures.
        if exc.status_code >= 500:
            logger.error(
                f"Gateway error: {exc.message}",
                data={"status_code": exc.status_code, "details": exc.details},
            )
        else:
            logger.info(
                f"Request rejected: {exc.message}",
                data={"status_code": exc.status_code, "code": exc.code},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "request_id": _request_id(),
                },
                **exc.details,
            },
            headers=exc.headers or None,
        )

    @app.exception_handler(RequestValidationError)
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle request and pydantic validation errors."""
        logger.warning(
            "Validation error",
            data={"errors": exc.errors()},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Validation error",
                "errors": jsonable_errors(exc.errors()),
                "error": {
                    "code": "E4220",
                    "message": "Validation error",
                    "request_id": _request_id(),
                },
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        code = f"E{exc.status_code}0"
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error": {
                    "code": code,
                    "message": exc.detail,
                    "request_id": _request_id(),
                },
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error": {
                    "code": "E5000",
                    "message": "Internal server error",
                    "request_id": _request_id(),
                },
            },
        )


def jsonable_errors(errors: list) -> list:
    """Drop non-serialisable ``ctx``/``input`` values from pydantic error dicts."""
    cleaned = []
    for err in errors:
        item = {k: v for k, v in err.items() if k not in ("ctx", "input", "url")}
        if "loc" in item:
            item["loc"] = [str(part) for part in item["loc"]]
        cleaned.append(item)
    return cleaned
