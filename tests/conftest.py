"""
Test Configuration and Fixtures

Central configuration for pytest including:
- Manual clock for time travel
- In-memory attempt store, policy and gate wired like production
- Fake credential verifier
- Test client for the full application

Usage:
    All fixtures defined here are automatically available to all tests.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.loader import GuardConfig, reset_config
from loginguard.services.attempt_store import InMemoryAttemptStore
from loginguard.services.lockout_policy import LockoutPolicy
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.clock import ManualClock
from loginguard.utils.structured_logger import clear_context
from tests.fixtures.login_fixtures import CLIENT_IP, VALID_EMAIL, FakeVerifier


# ==================== Core Fixtures ====================

@pytest.fixture(autouse=True)
def _reset_global_state():
    """Logging context and cached config must not leak between tests."""
    clear_context()
    reset_config()
    yield
    clear_context()
    reset_config()


@pytest.fixture
def manual_clock():
    """Clock starting at 1_700_000_000 that only moves when advanced."""
    return ManualClock()


@pytest.fixture
def memory_store():
    return InMemoryAttemptStore(lock_timeout=1.0)


@pytest.fixture
def policy():
    """Default policy: CAPTCHA after 3 failures, lock at 4, 30 minutes."""
    return LockoutPolicy(
        max_attempts_before_captcha=3,
        max_attempts_before_lockout=4,
        lockout_duration_seconds=1800,
    )


@pytest.fixture
def gate(memory_store, policy, manual_clock):
    return RateLimitGate(memory_store, policy, clock=manual_clock)


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def guard_config():
    """Defaults only, independent of the test runner's environment."""
    return GuardConfig(environ={})


# ==================== App Fixtures ====================

@pytest.fixture
def app(guard_config, gate, verifier):
    from main import create_app
    return create_app(config=guard_config, gate=gate, verifier=verifier)


@pytest.fixture
def client(app):
    """Test client whose requests come from CLIENT_IP."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Forwarded-For": CLIENT_IP},
    )


@pytest.fixture
def login_payload():
    return {"email": VALID_EMAIL, "password": "wrong-password"}
