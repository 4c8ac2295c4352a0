"""
Auth Routes Tests

Full login flow through create_app(): middleware, gate, fake verifier.
"""

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.login_fixtures import CLIENT_IP, OTHER_IP, VALID_EMAIL, VALID_PASSWORD

LOGIN_URL = "/api/v1/auth/login"


def fail(client, times=1, **payload):
    body = {"email": VALID_EMAIL, "password": "wrong-password"}
    body.update(payload)
    response = None
    for _ in range(times):
        response = client.post(LOGIN_URL, json=body)
    return response


class TestLoginSuccess:

    def test_returns_session(self, client, verifier):
        response = client.post(LOGIN_URL, json={"email": VALID_EMAIL, "password": VALID_PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["session"]["access_token"] == "access-token"
        assert verifier.calls == [(VALID_EMAIL, VALID_PASSWORD)]

    def test_success_clears_failures(self, client, gate):
        fail(client, times=2)

        client.post(LOGIN_URL, json={"email": VALID_EMAIL, "password": VALID_PASSWORD})

        assert gate.check_before_attempt(CLIENT_IP).attempts == 0


class TestLoginFailure:

    def test_invalid_credentials(self, client):
        response = fail(client)

        assert response.status_code == 401
        assert response.json() == {
            "error": "invalid_credentials",
            "message": "Ungültige E-Mail oder Passwort",
            "captcha_required": False,
            "attempts": 1,
        }

    def test_english(self, client):
        response = client.post(
            LOGIN_URL,
            json={"email": VALID_EMAIL, "password": "nope"},
            headers={"Accept-Language": "en-US"},
        )

        assert response.json()["message"] == "Invalid email or password"

    def test_email_not_confirmed_is_counted(self, client, verifier, gate):
        verifier.error = "email_not_confirmed"

        response = fail(client)

        assert response.status_code == 401
        assert response.json()["error"] == "email_not_confirmed"
        assert gate.check_before_attempt(CLIENT_IP).attempts == 1

    def test_unknown_verifier_error_is_opaque(self, client, verifier):
        verifier.error = "user_banned"

        response = fail(client)

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_credentials"

    def test_third_failure_announces_captcha(self, client):
        response = fail(client, times=3)

        assert response.status_code == 401
        assert response.json()["captcha_required"] is True
        assert response.json()["attempts"] == 3


class TestCaptcha:

    def test_missing_captcha_token_rejected(self, client, verifier, gate):
        fail(client, times=3)
        calls_before = len(verifier.calls)

        response = fail(client)

        assert response.status_code == 400
        assert response.json()["error"] == "captcha_required"
        assert response.json()["captcha_required"] is True
        assert len(verifier.calls) == calls_before
        assert gate.check_before_attempt(CLIENT_IP).attempts == 3

    def test_captcha_token_allows_attempt(self, client):
        fail(client, times=3)

        response = client.post(LOGIN_URL, json={
            "email": VALID_EMAIL,
            "password": VALID_PASSWORD,
            "captcha_token": "solved-token",
        })

        assert response.status_code == 200


class TestLockout:

    def test_fourth_failure_locks(self, client):
        fail(client, times=3)

        response = fail(client, captcha_token="solved-token")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "1800"
        data = response.json()
        assert data["error"] == "rate_limit_exceeded"
        assert data["locked"] is True
        assert data["remaining_seconds"] == 1800

    def test_locked_key_never_reaches_verifier(self, client, verifier):
        fail(client, times=3)
        fail(client, captcha_token="solved-token")
        calls_before = len(verifier.calls)

        response = client.post(LOGIN_URL, json={
            "email": VALID_EMAIL,
            "password": VALID_PASSWORD,
            "captcha_token": "solved-token",
        })

        assert response.status_code == 429
        assert len(verifier.calls) == calls_before

    def test_lock_expires(self, client, manual_clock):
        fail(client, times=3)
        fail(client, captcha_token="solved-token")
        manual_clock.advance(1801)

        response = client.post(LOGIN_URL, json={"email": VALID_EMAIL, "password": VALID_PASSWORD})

        assert response.status_code == 200

    def test_other_address_unaffected(self, client):
        fail(client, times=3)
        fail(client, captcha_token="solved-token")

        response = client.post(
            LOGIN_URL,
            json={"email": VALID_EMAIL, "password": VALID_PASSWORD},
            headers={"X-Forwarded-For": OTHER_IP},
        )

        assert response.status_code == 200


class TestErrors:

    def test_verifier_crash_is_500_and_not_counted(self, client, verifier, gate):
        verifier.exception = RuntimeError("auth backend exploded: secret-dsn")

        response = fail(client)

        assert response.status_code == 500
        assert "secret-dsn" not in response.text
        assert gate.check_before_attempt(CLIENT_IP).attempts == 0

    def test_invalid_body_is_422_and_not_counted(self, client, gate):
        response = client.post(LOGIN_URL, json={"email": "not-an-email", "password": ""})

        assert response.status_code == 422
        assert gate.check_before_attempt(CLIENT_IP).attempts == 0

    def test_verifier_not_configured(self, guard_config, gate):
        from main import create_app

        app = create_app(config=guard_config, gate=gate)
        app.state.verifier = None
        client = TestClient(app, raise_server_exceptions=False, headers={"X-Forwarded-For": CLIENT_IP})

        response = fail(client)

        assert response.status_code == 500


class TestDegraded:

    @pytest.fixture
    def degraded_client(self, guard_config, policy, manual_clock, verifier):
        from main import create_app
        from loginguard.services.rate_limit_gate import RateLimitGate
        from tests.fixtures.store_fixtures import failing_store

        gate = RateLimitGate(failing_store(), policy, clock=manual_clock)
        app = create_app(config=guard_config, gate=gate, verifier=verifier)
        return TestClient(app, raise_server_exceptions=False, headers={"X-Forwarded-For": CLIENT_IP})

    def test_login_still_works(self, degraded_client):
        response = degraded_client.post(LOGIN_URL, json={"email": VALID_EMAIL, "password": VALID_PASSWORD})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Degraded"] == "true"

    def test_failures_never_lock(self, degraded_client):
        for _ in range(10):
            response = fail(degraded_client)

        assert response.status_code == 401
        assert response.headers["X-RateLimit-Degraded"] == "true"
