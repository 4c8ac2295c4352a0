"""
Tests for the lockout policy.

Covers threshold validation, verdict evaluation over attempt records and the
pure failure transition shared by the in-memory store.
"""

import pytest

from loginguard.services.attempt_store import apply_failure
from loginguard.services.lockout_policy import (
    AttemptRecord,
    LockoutPolicy,
    Verdict,
    remaining_lock_seconds,
)
from loginguard.utils.errors import PolicyMisconfiguration

NOW = 1_700_000_000.0


class TestPolicyValidation:
    """Tests for LockoutPolicy construction."""

    def test_captcha_threshold_must_be_positive(self):
        with pytest.raises(PolicyMisconfiguration):
            LockoutPolicy(0, 4, 1800)

    def test_lockout_threshold_below_captcha_rejected(self):
        with pytest.raises(PolicyMisconfiguration, match="max_attempts_before_lockout"):
            LockoutPolicy(5, 4, 1800)

    def test_duration_must_be_positive(self):
        with pytest.raises(PolicyMisconfiguration):
            LockoutPolicy(3, 4, 0)

    def test_equal_thresholds_allowed(self):
        """CAPTCHA and lock may engage at the same count."""
        policy = LockoutPolicy(4, 4, 60)
        assert policy.max_attempts_before_captcha == 4

    def test_misconfiguration_is_value_error(self):
        with pytest.raises(ValueError):
            LockoutPolicy(3, 2, 1800)


class TestEvaluate:
    """Tests for LockoutPolicy.evaluate."""

    def test_no_record_is_allowed(self, policy):
        verdict = policy.evaluate(None, NOW)

        assert verdict.allowed is True
        assert verdict.captcha_required is False
        assert verdict.attempts == 0
        assert verdict.remaining_seconds == 0

    def test_below_captcha_threshold(self, policy):
        verdict = policy.evaluate(AttemptRecord(failure_count=2, updated_at=NOW), NOW)

        assert verdict.allowed is True
        assert verdict.captcha_required is False
        assert verdict.attempts == 2

    def test_captcha_required_at_threshold(self, policy):
        verdict = policy.evaluate(AttemptRecord(failure_count=3, updated_at=NOW), NOW)

        assert verdict.allowed is True
        assert verdict.captcha_required is True
        assert verdict.attempts == 3

    def test_active_lock(self, policy):
        record = AttemptRecord(failure_count=4, locked_until=NOW + 1800, updated_at=NOW)

        verdict = policy.evaluate(record, NOW)

        assert verdict.locked is True
        assert verdict.remaining_seconds == 1800
        assert verdict.attempts == 4

    def test_remaining_seconds_rounds_up(self, policy):
        record = AttemptRecord(failure_count=4, locked_until=NOW + 10.2, updated_at=NOW)

        assert policy.evaluate(record, NOW).remaining_seconds == 11

    def test_lock_expires_exactly_at_locked_until(self, policy):
        record = AttemptRecord(failure_count=4, locked_until=NOW + 1800, updated_at=NOW)

        verdict = policy.evaluate(record, NOW + 1800)

        assert verdict.allowed is True
        assert verdict.captcha_required is False
        assert verdict.attempts == 0

    def test_lock_still_active_just_before_expiry(self, policy):
        record = AttemptRecord(failure_count=4, locked_until=NOW + 1800, updated_at=NOW)

        verdict = policy.evaluate(record, NOW + 1799.5)

        assert verdict.locked is True
        assert verdict.remaining_seconds == 1


class TestRemainingLockSeconds:

    def test_never_negative(self):
        assert remaining_lock_seconds(NOW, NOW + 500) == 0

    def test_whole_seconds(self):
        assert remaining_lock_seconds(NOW + 60, NOW) == 60


class TestVerdict:
    """Tests for the Verdict value object."""

    def test_fail_open_is_allowed_and_degraded(self):
        verdict = Verdict.fail_open()

        assert verdict.allowed is True
        assert verdict.captcha_required is False
        assert verdict.degraded is True

    def test_to_dict_shape(self):
        verdict = Verdict(locked=True, remaining_seconds=30, attempts=4)

        assert verdict.to_dict() == {
            "locked": True,
            "remaining_seconds": 30,
            "attempts": 4,
            "captcha_required": False,
            "degraded": False,
        }


class TestApplyFailure:
    """Tests for the failure transition every store implements."""

    def test_first_failure(self):
        record = apply_failure(None, NOW, 1800, 4)

        assert record.failure_count == 1
        assert record.locked_until is None
        assert record.updated_at == NOW

    def test_increments(self):
        record = apply_failure(AttemptRecord(failure_count=2, updated_at=NOW - 5), NOW, 1800, 4)

        assert record.failure_count == 3
        assert record.locked_until is None

    def test_locks_at_max_attempts(self):
        record = apply_failure(AttemptRecord(failure_count=3, updated_at=NOW), NOW, 1800, 4)

        assert record.failure_count == 4
        assert record.locked_until == NOW + 1800

    def test_active_lock_unchanged(self):
        locked = AttemptRecord(failure_count=4, locked_until=NOW + 100, updated_at=NOW - 1700)

        assert apply_failure(locked, NOW, 1800, 4) is locked

    def test_expired_lock_starts_new_cycle(self):
        expired = AttemptRecord(failure_count=4, locked_until=NOW - 1, updated_at=NOW - 1801)

        record = apply_failure(expired, NOW, 1800, 4)

        assert record.failure_count == 1
        assert record.locked_until is None
