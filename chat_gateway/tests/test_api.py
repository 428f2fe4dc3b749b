"""HTTP tests for the gateway routes.

The app runs with an in-memory store, a fake EC2 manager and static bearer
tokens (see ``gateway_app`` in conftest).
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_gateway.core.exceptions import CostReportError
from chat_gateway.core.limits import QuotaPolicy, QuotaTable
from chat_gateway.services.admission_service import AdmissionController
from chat_gateway.services.instance_service import ManagedResourceState, RunState

USER_HEADERS = {"Authorization": "Bearer user-token"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}


class TestHealth:
    def test_health(self, client):
        for path in ("/health", "/healthz"):
            response = client.get(path)
            assert response.status_code == 200
            body = response.json()
            assert body["status"] == "ok"
            assert body["uptime_seconds"] >= 0

    def test_security_headers_and_request_id(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers.get("X-Request-ID")


@pytest.mark.security
class TestAuthentication:
    def test_missing_token_is_401(self, client):
        response = client.get("/api/instance")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "E2000"

    def test_unknown_token_is_401(self, client):
        response = client.get("/api/instance", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_wrong_scheme_is_401(self, client):
        response = client.get("/api/instance", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401

    def test_auth_fails_closed_even_when_store_is_down(self, gateway_app, failing_store, clock):
        gateway_app.state.admission_controller = AdmissionController(
            failing_store, gateway_app.state.admission_controller.quotas, clock=clock
        )
        with TestClient(gateway_app) as c:
            assert c.get("/api/instance").status_code == 401
            assert c.get("/api/instance", headers={"Authorization": "Bearer nope"}).status_code == 401
        # Rejected before admission control is consulted.
        assert failing_store.calls == 0


class TestInstanceRoutes:
    def test_status_sets_rate_limit_headers(self, client):
        response = client.get("/api/instance", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"state": "stopped", "publicIp": None, "ollamaReady": False}
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert response.headers["X-RateLimit-Remaining"] == "2"
        assert int(response.headers["X-RateLimit-Reset"]) % 60 == 0

    def test_heartbeat_is_recorded_on_status(self, client, memory_store, fixed_now):
        assert "system:heartbeat" not in memory_store._records

        client.get("/api/instance", headers=USER_HEADERS)

        assert memory_store._records["system:heartbeat"] == {"timestamp": fixed_now.isoformat()}

    def test_fourth_request_is_rejected_with_429(self, client):
        for _ in range(3):
            assert client.get("/api/instance", headers=USER_HEADERS).status_code == 200

        response = client.get("/api/instance", headers=USER_HEADERS)

        assert response.status_code == 429
        body = response.json()
        assert body["error"]["code"] == "E1005"
        assert body["detail"].startswith("Too many requests. Please try again in")
        assert body["limit"] == 3
        assert body["remaining"] == 0
        assert body["resetAt"] % 60 == 0
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_retry_after_follows_controller_clock(self, client, clock):
        for _ in range(3):
            client.get("/api/instance", headers=USER_HEADERS)

        response = client.get("/api/instance", headers=USER_HEADERS)
        assert response.headers["Retry-After"] == "60"
        assert response.json()["detail"] == "Too many requests. Please try again in 60 seconds."

        clock.advance(45)
        response = client.get("/api/instance", headers=USER_HEADERS)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "15"

    def test_quota_is_shared_by_get_and_post(self, client):
        client.get("/api/instance", headers=USER_HEADERS)
        client.post("/api/instance", json={"action": "start"}, headers=USER_HEADERS)
        client.post("/api/instance", json={"action": "stop"}, headers=USER_HEADERS)

        response = client.post("/api/instance", json={"action": "start"}, headers=USER_HEADERS)
        assert response.status_code == 429

    def test_users_have_separate_quotas(self, client):
        for _ in range(4):
            client.get("/api/instance", headers=USER_HEADERS)
        assert client.get("/api/instance", headers=ADMIN_HEADERS).status_code == 200

    def test_start_and_stop(self, client, gateway_app):
        manager = gateway_app.state.resource_manager

        start = client.post("/api/instance", json={"action": "start"}, headers=USER_HEADERS)
        stop = client.post("/api/instance", json={"action": "stop"}, headers=USER_HEADERS)

        assert start.json() == {"success": True, "action": "start"}
        assert stop.json() == {"success": True, "action": "stop"}
        assert manager.start_calls == 1
        assert manager.stop_calls == 1

    @pytest.mark.parametrize("body", [{"action": "reboot"}, {}, {"action": ""}])
    def test_invalid_action_is_400(self, client, gateway_app, body):
        response = client.post("/api/instance", json=body, headers=USER_HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == 'Invalid action. Must be "start" or "stop"'
        assert gateway_app.state.resource_manager.start_calls == 0

    def test_store_outage_fails_open(self, gateway_app, failing_store, clock):
        gateway_app.state.admission_controller = AdmissionController(
            failing_store, gateway_app.state.admission_controller.quotas, clock=clock
        )
        with TestClient(gateway_app) as c:
            for _ in range(10):
                response = c.post("/api/instance", json={"action": "start"}, headers=USER_HEADERS)
                assert response.status_code == 200
                assert response.headers["X-RateLimit-Remaining"] == "3"


class TestRateLimitStatus:
    def test_status_does_not_consume_quota(self, client):
        client.get("/api/instance", headers=USER_HEADERS)

        for _ in range(5):
            response = client.get("/api/ratelimit/instance", headers=USER_HEADERS)
            assert response.status_code == 200
            assert response.json()["remaining"] == 2

        assert client.get("/api/instance", headers=USER_HEADERS).status_code == 200

    def test_unknown_operation_reports_default(self, client):
        body = client.get("/api/ratelimit/whatever", headers=USER_HEADERS).json()

        assert body == {
            "operation": "whatever",
            "allowed": True,
            "limit": 30,
            "remaining": 30,
            "resetAt": body["resetAt"],
        }

    def test_requires_authentication(self, client):
        assert client.get("/api/ratelimit/instance").status_code == 401


class TestAdminRoutes:
    def test_non_admin_is_403(self, client):
        response = client.get("/api/admin/autostop", headers=USER_HEADERS)
        assert response.status_code == 403
        assert response.json()["detail"] == "Admin access required"

    def test_admin_sees_configuration(self, client):
        response = client.get("/api/admin/autostop", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["idle_timeout_seconds"] == 15 * 60
        assert body["hard_limit_seconds"] == 60 * 60
        assert body["scheduler_enabled"] is False
        assert body["scheduler_running"] is False
        assert body["last_outcome"] is None

    def test_manual_evaluation(self, client, gateway_app):
        response = client.post("/api/admin/autostop/evaluate", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["action"] == "no-op"
        assert response.json()["reason"] == "not-running"
        assert gateway_app.state.resource_manager.stop_calls == 0

        status = client.get("/api/admin/autostop", headers=ADMIN_HEADERS).json()
        assert status["last_outcome"]["reason"] == "not-running"

    def test_admin_routes_are_rate_limited(self, client):
        for _ in range(5):
            assert client.get("/api/admin/autostop", headers=ADMIN_HEADERS).status_code == 200
        assert client.get("/api/admin/autostop", headers=ADMIN_HEADERS).status_code == 429


@pytest.fixture
def running_ollama(monkeypatch, gateway_app):
    """Mark the instance running and answer Ollama calls from ``routes``."""
    gateway_app.state.resource_manager.state = ManagedResourceState(
        run_state=RunState.RUNNING, public_ip="203.0.113.10"
    )
    routes = {}
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.content))
        return routes[(request.method, request.url.path)]

    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)
    return routes, seen


class TestModelRoutes:
    def test_list(self, client, running_ollama):
        routes, _ = running_ollama
        routes[("GET", "/api/tags")] = httpx.Response(200, json={"models": [{"name": "llama3:8b"}]})

        response = client.get("/api/models", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"models": [{"name": "llama3:8b"}]}
        assert response.headers["X-RateLimit-Limit"] == "30"

    def test_pull_waits_for_completion(self, client, running_ollama):
        routes, seen = running_ollama
        routes[("POST", "/api/pull")] = httpx.Response(
            200, text='{"status":"pulling manifest"}\n{"status":"success"}\n'
        )

        response = client.post("/api/models", json={"name": "llama3:8b"}, headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"status": "success"}
        assert seen[0][:2] == ("POST", "/api/pull")

    def test_delete(self, client, running_ollama):
        routes, _ = running_ollama
        routes[("DELETE", "/api/delete")] = httpx.Response(200)

        response = client.request("DELETE", "/api/models", json={"name": "llama3:8b"}, headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": True}

    @pytest.mark.parametrize("method", ["POST", "DELETE"])
    @pytest.mark.parametrize("body", [{}, {"name": "  "}])
    def test_missing_name_is_400(self, client, running_ollama, method, body):
        response = client.request(method, "/api/models", json=body, headers=USER_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E4000"
        assert running_ollama[1] == []

    def test_ollama_failure_is_502(self, client, running_ollama):
        routes, _ = running_ollama
        routes[("GET", "/api/tags")] = httpx.Response(500, text="boom")

        response = client.get("/api/models", headers=USER_HEADERS)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "E3001"
        assert response.json()["upstream_status"] == 500

    def test_stopped_instance_is_502(self, client):
        response = client.get("/api/models", headers=USER_HEADERS)
        assert response.status_code == 502

    def test_requires_authentication(self, client):
        assert client.get("/api/models").status_code == 401


class TestCostRoutes:
    def test_report(self, client, gateway_app):
        response = client.get("/api/costs", headers=USER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"yesterday": 1.25, "month": 17.5}
        assert response.headers["X-RateLimit-Remaining"] == "29"
        assert gateway_app.state.cost_reporter.calls == 1

    def test_cost_explorer_failure_is_502(self, client, gateway_app):
        gateway_app.state.cost_reporter.error = CostReportError("Cost report unavailable: AccessDenied")

        response = client.get("/api/costs", headers=USER_HEADERS)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "E3002"

    def test_requires_authentication(self, client, gateway_app):
        assert client.get("/api/costs").status_code == 401
        assert gateway_app.state.cost_reporter.calls == 0


def test_default_quota_table_is_used_when_unconfigured(gateway_app, memory_store, clock):
    gateway_app.state.admission_controller = AdmissionController(
        memory_store,
        QuotaTable(default=QuotaPolicy(max_requests=1, window_seconds=60)),
        clock=clock,
    )
    with TestClient(gateway_app) as c:
        assert c.get("/api/instance", headers=USER_HEADERS).status_code == 200
        assert c.get("/api/instance", headers=USER_HEADERS).status_code == 429
