"""
Login Guard Middleware Tests

Tests for the edge interceptor:
- Classification of login submissions vs everything else
- DENY of locked keys before the route runs
- ADMIT with the verdict on request.state
- Degraded marker when the store is down
"""

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from loginguard.middleware.login_guard_middleware import InterceptState, LoginGuardMiddleware
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.structured_logger import get_client_key
from tests.fixtures.login_fixtures import CLIENT_IP, OTHER_IP
from tests.fixtures.store_fixtures import failing_store


def build_app(gate, **kwargs):
    app = FastAPI()
    app.add_middleware(LoginGuardMiddleware, gate=gate, **kwargs)
    app.state.route_calls = 0

    @app.post("/login")
    async def login(request: Request):
        app.state.route_calls += 1
        verdict = request.state.login_verdict
        return {
            "client_key": request.state.client_key,
            "context_key": get_client_key(),
            "verdict": verdict.to_dict(),
        }

    @app.get("/login")
    async def login_form():
        return {"form": True}

    @app.post("/other")
    async def other():
        return {"ok": True}

    return app


@pytest.fixture
def guarded_app(gate):
    return build_app(gate)


@pytest.fixture
def test_client(guarded_app):
    return TestClient(guarded_app, raise_server_exceptions=False, headers={"X-Forwarded-For": CLIENT_IP})


def lock(gate, key=CLIENT_IP):
    for _ in range(4):
        gate.record_failure(key)


class TestClassify:

    def _request(self, method, path):
        request = MagicMock()
        request.method = method
        request.url.path = path
        return request

    def test_classification(self, gate):
        middleware = LoginGuardMiddleware(FastAPI(), gate=gate, login_paths=["/login", "/api/v1/auth/login"])

        assert middleware.classify(self._request("POST", "/login")) is InterceptState.CHECK
        assert middleware.classify(self._request("POST", "/login/")) is InterceptState.CHECK
        assert middleware.classify(self._request("POST", "/api/v1/auth/login")) is InterceptState.CHECK
        assert middleware.classify(self._request("POST", "/api/v1/auth/logout")) is InterceptState.PASS_THROUGH
        assert middleware.classify(self._request("GET", "/login")) is InterceptState.PASS_THROUGH
        assert middleware.classify(self._request("OPTIONS", "/login")) is InterceptState.PASS_THROUGH


class TestAdmit:

    def test_fresh_key_admitted(self, test_client, guarded_app):
        response = test_client.post("/login")

        assert response.status_code == 200
        data = response.json()
        assert data["client_key"] == CLIENT_IP
        assert data["context_key"] == CLIENT_IP
        assert data["verdict"]["locked"] is False
        assert guarded_app.state.route_calls == 1

    def test_captcha_hint_passed_to_route(self, test_client, gate):
        for _ in range(3):
            gate.record_failure(CLIENT_IP)

        response = test_client.post("/login")

        assert response.status_code == 200
        assert response.json()["verdict"]["captcha_required"] is True

    def test_no_degraded_header_when_healthy(self, test_client):
        assert "X-RateLimit-Degraded" not in test_client.post("/login").headers


class TestDeny:

    def test_locked_key_denied(self, test_client, gate, guarded_app):
        lock(gate)

        response = test_client.post("/login")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1800"
        data = response.json()
        assert data["error"] == "rate_limit_exceeded"
        assert data["locked"] is True
        assert data["remaining_seconds"] == 1800
        assert "30 Minuten" in data["message"]
        assert guarded_app.state.route_calls == 0

    def test_english_message(self, test_client, gate):
        lock(gate)

        response = test_client.post("/login", headers={"Accept-Language": "en-GB,en;q=0.8"})

        assert "30 minutes" in response.json()["message"]

    def test_default_locale_setting(self, gate):
        client = TestClient(build_app(gate, default_locale="en"), headers={"X-Forwarded-For": CLIENT_IP})
        lock(gate)

        assert "minutes" in client.post("/login").json()["message"]

    def test_other_key_unaffected(self, test_client, gate):
        lock(gate)

        response = test_client.post("/login", headers={"X-Forwarded-For": OTHER_IP})

        assert response.status_code == 200

    def test_non_login_paths_pass_through(self, test_client, gate):
        lock(gate)

        assert test_client.post("/other").status_code == 200
        assert test_client.get("/login").status_code == 200

    def test_lock_expires(self, test_client, gate, manual_clock):
        lock(gate)
        manual_clock.advance(1800)

        assert test_client.post("/login").status_code == 200

    def test_untrusted_proxy_headers(self, gate):
        """Without proxy trust, spoofed X-Forwarded-For cannot dodge a lock."""
        client = TestClient(build_app(gate, trust_proxy_headers=False))
        lock(gate, "unknown")

        response = client.post("/login", headers={"X-Forwarded-For": OTHER_IP})

        assert response.status_code == 429


class TestDegraded:

    def test_store_down_fails_open_with_marker(self, policy, manual_clock):
        gate = RateLimitGate(failing_store(), policy, clock=manual_clock)
        client = TestClient(build_app(gate), headers={"X-Forwarded-For": CLIENT_IP})

        response = client.post("/login")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Degraded"] == "true"
        assert response.json()["verdict"]["degraded"] is True
