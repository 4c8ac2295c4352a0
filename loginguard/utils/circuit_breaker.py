"""
Circuit breaker around the attempt store.

While the store keeps failing, every login would otherwise wait for the full
store timeout before failing open. The breaker skips the store for
recovery_timeout seconds after failure_threshold consecutive failures.
States: closed (normal) -> open (skipping) -> half-open (one probe).
"""
import threading
from typing import Optional

from loginguard.utils.clock import Clock, SystemClock
from loginguard.utils.structured_logger import get_logger

logger = get_logger(__name__)

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"


class CircuitBreaker:
    """Thread-safe circuit breaker."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        clock: Optional[Clock] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.opened_at = 0.0
        self.state = CLOSED
        self._probe_in_flight = False
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()

    def record_success(self):
        with self._lock:
            if self.state != CLOSED:
                logger.info(f"Circuit breaker [{self.name}] CLOSED, store recovered")
            self.failures = 0
            self.state = CLOSED
            self._probe_in_flight = False

    def record_failure(self):
        with self._lock:
            self.failures += 1
            self._probe_in_flight = False
            if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
                if self.state != OPEN:
                    logger.warning(
                        f"Circuit breaker [{self.name}] OPEN after {self.failures} failures"
                    )
                self.state = OPEN
                self.opened_at = self._clock.now()

    def can_execute(self) -> bool:
        with self._lock:
            if self.state == CLOSED:
                return True
            if self.state == OPEN:
                if self._clock.now() - self.opened_at < self.recovery_timeout:
                    return False
                self.state = HALF_OPEN
                logger.info(f"Circuit breaker [{self.name}] HALF-OPEN, allowing probe")
            # half-open: a single probe at a time
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def get_status(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self.state,
                "failures": self.failures,
                "threshold": self.failure_threshold,
                "recovery_timeout": self.recovery_timeout,
            }
