"""Pytest configuration and fixtures for chat gateway tests.

This module sets up the test environment before any tests run, ensuring
that settings are properly configured for the test context.
"""

import os


def pytest_configure(config):
    """Configure test environment before any tests run.

    Environment variables are set BEFORE the app module is imported so the
    cached settings are built for the test context.

    Key test settings:
    - ENVIRONMENT=test
    - LIMITS_BACKEND=memory (no Redis/DynamoDB needed)
    - Autostop scheduler disabled (tests drive evaluations explicitly)
    - Fake AWS credentials so boto3 clients can be built for stubbing
    """
    config.addinivalue_line("markers", "security: Security-related tests (required gate)")
    config.addinivalue_line("markers", "slow: Slow-running tests (excluded from fast)")
    config.addinivalue_line("markers", "integration: Integration tests requiring external services")

    os.environ.setdefault("ENVIRONMENT", "test")
    os.environ.setdefault("LIMITS_BACKEND", "memory")
    os.environ.setdefault("AUTOSTOP_SCHEDULER_ENABLED", "false")
    os.environ.setdefault("AUTH_DOMAIN", "auth.example.test")
    os.environ.setdefault("ADMIN_EMAILS", "admin@example.com")
    os.environ.setdefault("INSTANCE_ID", "i-0123456789abcdef0")
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
