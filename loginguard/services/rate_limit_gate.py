"""
RateLimitGate - the one authoritative login brute-force engine.

Wraps an AttemptStore and a LockoutPolicy around a login attempt:

    verdict = gate.check_before_attempt(key)     # before verifying credentials
    verdict = gate.record_failure(key)           # after a failed verification
    gate.record_success(key)                     # after a successful one

Store errors never leave the gate. Reads fail open (allowed, no CAPTCHA) and
writes are logged; both produce a verdict with degraded=True so the outage is
visible to callers and operators instead of turning into a silent bypass.
"""

from typing import Optional

from loginguard.services.attempt_store import AttemptStore, create_attempt_store
from loginguard.services.lockout_policy import LockoutPolicy, Verdict
from loginguard.utils.circuit_breaker import CircuitBreaker
from loginguard.utils.clock import Clock, SystemClock
from loginguard.utils.errors import StoreUnavailable
from loginguard.utils.structured_logger import get_logger

logger = get_logger(__name__)


class RateLimitGate:
    """Orchestrates attempt storage and lockout policy for login attempts."""

    def __init__(
        self,
        store: AttemptStore,
        policy: LockoutPolicy,
        clock: Optional[Clock] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.store = store
        self.policy = policy
        self.clock = clock or SystemClock()
        self.breaker = breaker or CircuitBreaker(name=f"attempt_store:{store.backend}", clock=self.clock)

    def _now(self, now: Optional[float]) -> float:
        return self.clock.now() if now is None else now

    def _store_call(self, operation: str, key: str, func, *args):
        """Run a store operation through the circuit breaker.

        Raises StoreUnavailable when the store fails or the circuit is open.
        Any other exception from the store, such as a record it cannot
        decode, counts as a store failure too.
        """
        if not self.breaker.can_execute():
            raise StoreUnavailable(operation, key, RuntimeError("circuit open"))
        try:
            result = func(*args)
        except StoreUnavailable:
            self.breaker.record_failure()
            raise
        except Exception as e:
            self.breaker.record_failure()
            raise StoreUnavailable(operation, key, e) from e
        self.breaker.record_success()
        return result

    # ==================== Gate operations ====================

    def check_before_attempt(self, key: str, now: Optional[float] = None) -> Verdict:
        """May this key attempt a login now? Side-effect free."""
        now = self._now(now)
        try:
            record = self._store_call("load", key, self.store.load, key)
        except StoreUnavailable as e:
            logger.warning(
                "Attempt store read failed, failing open",
                extra={"attempt_key": key, "operation": "load", "error": str(e)},
            )
            return Verdict.fail_open()
        return self.policy.evaluate(record, now)

    def record_failure(self, key: str, now: Optional[float] = None) -> Verdict:
        """Count a failed login and return the verdict for the updated record."""
        now = self._now(now)
        try:
            record = self._store_call(
                "record_failure",
                key,
                self.store.record_failure,
                key,
                now,
                self.policy.lockout_duration_seconds,
                self.policy.max_attempts_before_lockout,
            )
        except StoreUnavailable as e:
            logger.warning(
                "Failed login could not be recorded, attempt not counted",
                extra={"attempt_key": key, "operation": "record_failure", "error": str(e)},
            )
            return Verdict.fail_open()

        verdict = self.policy.evaluate(record, now)
        if verdict.locked and record.lock_engaged:
            logger.warning(
                "Lockout engaged",
                extra={
                    "attempt_key": key,
                    "attempts": record.failure_count,
                    "lockout_seconds": verdict.remaining_seconds,
                },
            )
        elif verdict.captcha_required:
            logger.info(
                "CAPTCHA required for further attempts",
                extra={"attempt_key": key, "attempts": record.failure_count},
            )
        return verdict

    def record_success(self, key: str, now: Optional[float] = None) -> bool:
        """Clear the key's record. Best effort: returns False instead of raising."""
        try:
            self._store_call("clear", key, self.store.clear, key)
        except StoreUnavailable as e:
            logger.warning(
                "Attempt record could not be cleared after successful login",
                extra={"attempt_key": key, "operation": "clear", "error": str(e)},
            )
            return False
        return True

    # ==================== Collaborator-facing shapes ====================

    def check_rate_limit(self, key: str) -> dict:
        return self.check_before_attempt(key).to_dict()

    def record_failed_attempt(self, key: str) -> dict:
        return self.record_failure(key).to_dict()

    def reset_rate_limit(self, key: str) -> None:
        self.record_success(key)

    def status(self) -> dict:
        """Store and circuit health for readiness probes."""
        try:
            store_info = self.store.describe()
        except Exception as e:
            store_info = {"backend": self.store.backend, "healthy": False, "message": str(e)}
        circuit = self.breaker.get_status()
        return {
            "store": store_info,
            "circuit": circuit,
            "degraded": circuit["state"] != "closed" or not store_info.get("healthy", False),
            "policy": {
                "max_attempts_before_captcha": self.policy.max_attempts_before_captcha,
                "max_attempts_before_lockout": self.policy.max_attempts_before_lockout,
                "lockout_duration_seconds": self.policy.lockout_duration_seconds,
            },
        }


def build_gate(config, clock: Optional[Clock] = None, store: Optional[AttemptStore] = None) -> RateLimitGate:
    """Wire a gate from GuardConfig. Raises PolicyMisconfiguration on bad thresholds."""
    clock = clock or SystemClock()
    store = store or create_attempt_store(config)
    breaker = CircuitBreaker(
        name=f"attempt_store:{store.backend}",
        failure_threshold=config.circuit_failure_threshold,
        recovery_timeout=config.circuit_recovery_seconds,
        clock=clock,
    )
    return RateLimitGate(store, config.build_policy(), clock=clock, breaker=breaker)
