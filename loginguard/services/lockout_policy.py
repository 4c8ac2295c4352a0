"""
Lockout policy: pure decision logic over an attempt record.

evaluate() is a function of (record, now) and the thresholds given at
construction. It never touches storage and never schedules anything; a lock
expires simply because `now` passed `locked_until`.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from loginguard.utils.errors import PolicyMisconfiguration


@dataclass(frozen=True)
class AttemptRecord:
    """Per-key attempt state as held by an AttemptStore.

    lock_engaged is only set on the record returned by the failure that
    engaged the lock. It is not persisted and takes no part in equality.
    """
    failure_count: int = 0
    locked_until: Optional[float] = None
    updated_at: float = 0.0
    lock_engaged: bool = field(default=False, compare=False)

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def lock_expired(self, now: float) -> bool:
        return self.locked_until is not None and now >= self.locked_until


@dataclass(frozen=True)
class Verdict:
    """Outcome of a policy evaluation.

    degraded is True when the verdict is a fail-open default produced because
    the attempt store could not be reached.
    """
    locked: bool
    captcha_required: bool = False
    remaining_seconds: int = 0
    attempts: int = 0
    degraded: bool = False

    @property
    def allowed(self) -> bool:
        return not self.locked

    @classmethod
    def fail_open(cls) -> "Verdict":
        return cls(locked=False, degraded=True)

    def to_dict(self) -> dict:
        return {
            "locked": self.locked,
            "remaining_seconds": self.remaining_seconds,
            "attempts": self.attempts,
            "captcha_required": self.captcha_required,
            "degraded": self.degraded,
        }


def remaining_lock_seconds(locked_until: float, now: float) -> int:
    """Whole seconds left on a lock, rounded up and never negative."""
    return max(0, math.ceil(locked_until - now))


class LockoutPolicy:
    """CAPTCHA escalation and lockout thresholds.

    Args:
        max_attempts_before_captcha: failures after which the next attempt
            needs a solved CAPTCHA
        max_attempts_before_lockout: failure count that engages the lock
        lockout_duration_seconds: how long a lock lasts
    """

    def __init__(
        self,
        max_attempts_before_captcha: int,
        max_attempts_before_lockout: int,
        lockout_duration_seconds: float,
    ):
        if max_attempts_before_captcha < 1:
            raise PolicyMisconfiguration(
                f"max_attempts_before_captcha must be >= 1, got {max_attempts_before_captcha}"
            )
        if max_attempts_before_lockout < max_attempts_before_captcha:
            raise PolicyMisconfiguration(
                "max_attempts_before_lockout must be >= max_attempts_before_captcha "
                f"({max_attempts_before_lockout} < {max_attempts_before_captcha})"
            )
        if lockout_duration_seconds <= 0:
            raise PolicyMisconfiguration(
                f"lockout_duration_seconds must be positive, got {lockout_duration_seconds}"
            )
        self.max_attempts_before_captcha = max_attempts_before_captcha
        self.max_attempts_before_lockout = max_attempts_before_lockout
        self.lockout_duration_seconds = lockout_duration_seconds

    def evaluate(self, record: Optional[AttemptRecord], now: float) -> Verdict:
        if record is None:
            return Verdict(locked=False)

        if record.locked_until is not None:
            if now < record.locked_until:
                return Verdict(
                    locked=True,
                    remaining_seconds=remaining_lock_seconds(record.locked_until, now),
                    attempts=record.failure_count,
                )
            # lazily expired lock: a fresh cycle begins
            return Verdict(locked=False)

        return Verdict(
            locked=False,
            captcha_required=record.failure_count >= self.max_attempts_before_captcha,
            attempts=record.failure_count,
        )
