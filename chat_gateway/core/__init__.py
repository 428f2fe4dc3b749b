"""Core module with logging, middleware, and exception handling."""

from chat_gateway.core.exceptions import setup_exception_handlers
from chat_gateway.core.logging import get_logger, setup_logging
from chat_gateway.core.middleware import (
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "RequestContextMiddleware",
    "SecurityHeadersMiddleware",
    "setup_exception_handlers",
]
