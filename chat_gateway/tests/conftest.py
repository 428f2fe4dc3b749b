"""Shared fakes for the gateway test suite."""

from datetime import UTC, datetime
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from chat_gateway.auth.identity import AuthUser
from chat_gateway.core.exceptions import AuthenticationError
from chat_gateway.core.limits import QuotaPolicy, QuotaTable
from chat_gateway.core.limits.memory import InMemoryCounterStore
from chat_gateway.services.admission_service import AdmissionController
from chat_gateway.services.instance_service import ManagedResourceState, RunState
from chat_gateway.services.lifecycle_service import LifecycleMonitor, LifecycleScheduler
from chat_gateway.services.liveness_service import LivenessSignal

T0 = 1_700_000_040  # a multiple of 60


class FakeClock:
    """Callable epoch-seconds clock that tests move by hand."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore:
    """Counter/record store whose every call fails like an unreachable backend."""

    def __init__(self):
        self.calls = 0

    async def increment(self, key, expires_at):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def get_count(self, key):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def put_record(self, key, record):
        self.calls += 1
        raise ConnectionError("store unreachable")

    async def get_record(self, key):
        self.calls += 1
        raise ConnectionError("store unreachable")


class FakeResourceManager:
    """Records describe/start/stop calls; optional injected failures."""

    def __init__(
        self,
        run_state: RunState = RunState.RUNNING,
        started_at: Optional[datetime] = None,
        public_ip: Optional[str] = "203.0.113.10",
        describe_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
    ):
        self.state = ManagedResourceState(run_state=run_state, started_at=started_at, public_ip=public_ip)
        self.describe_error = describe_error
        self.stop_error = stop_error
        self.describe_calls = 0
        self.start_calls = 0
        self.stop_calls = 0

    async def describe(self) -> ManagedResourceState:
        self.describe_calls += 1
        if self.describe_error:
            raise self.describe_error
        return self.state

    async def start(self) -> None:
        self.start_calls += 1

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.stop_error:
            raise self.stop_error


class FakeCostReporter:
    """Returns a fixed cost report, or raises ``error`` when set."""

    def __init__(self, yesterday: float = 1.25, month: float = 17.5, error: Optional[Exception] = None):
        self.report = {"yesterday": yesterday, "month": month}
        self.error = error
        self.calls = 0

    async def get_costs(self) -> dict[str, float]:
        self.calls += 1
        if self.error:
            raise self.error
        return self.report


class StaticVerifier:
    """Identity verifier backed by a token -> user table."""

    def __init__(self, users: dict[str, AuthUser]):
        self.users = users

    async def verify(self, token: str) -> AuthUser:
        user = self.users.get(token)
        if user is None:
            raise AuthenticationError("Token verification failed: unknown token")
        return user


USER = AuthUser(sub="auth0|u1", email="user@example.com")
ADMIN = AuthUser(sub="auth0|admin", email="Admin@Example.com")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fixed_now():
    return datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


@pytest.fixture
def memory_store(clock):
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def make_manager():
    return FakeResourceManager


@pytest.fixture
def gateway_app(monkeypatch, clock, memory_store, fixed_now):
    """App with in-memory store, fake clock, fake EC2 and static tokens."""
    from chat_gateway.config import get_settings
    from chat_gateway.main import create_app
    from chat_gateway.services.instance_service import InstanceService
    from chat_gateway.services.model_service import ModelService

    get_settings.cache_clear()
    app = create_app()

    quotas = QuotaTable(
        default=QuotaPolicy(max_requests=30, window_seconds=60),
        limits={"instance": QuotaPolicy(max_requests=3, window_seconds=60),
                "admin": QuotaPolicy(max_requests=5, window_seconds=60)},
    )
    manager = FakeResourceManager(run_state=RunState.STOPPED, public_ip=None)
    liveness = LivenessSignal(memory_store, clock=lambda: fixed_now)

    app.state.counter_store = memory_store
    app.state.record_store = memory_store
    app.state.admission_controller = AdmissionController(memory_store, quotas, clock=clock)
    app.state.identity_verifier = StaticVerifier({"user-token": USER, "admin-token": ADMIN})
    app.state.resource_manager = manager
    app.state.liveness = liveness
    app.state.instance_service = InstanceService(manager, liveness)
    app.state.model_service = ModelService(app.state.instance_service)
    app.state.cost_reporter = FakeCostReporter()
    app.state.lifecycle_scheduler = LifecycleScheduler(
        LifecycleMonitor(manager, liveness, clock=lambda: fixed_now),
        interval_seconds=300,
        enabled=False,
    )
    return app


@pytest.fixture
def client(gateway_app):
    with TestClient(gateway_app) as c:
        yield c
