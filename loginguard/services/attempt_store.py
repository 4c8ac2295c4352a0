"""
Attempt storage for the login guard.

An AttemptStore is the single source of truth for per-key failure counts and
lock timestamps. Every backend guarantees that record_failure() is one atomic
read-modify-write per key, so concurrent failing logins for the same address
can never under-count. Backends raise StoreUnavailable for any storage error
or timeout; they never decide what to do about it.

Backends:
    InMemoryAttemptStore  - per-key locks, single process (development, tests)
    RedisAttemptStore     - Lua scripts, shared across processes (production)
    SupabaseAttemptStore  - Postgres functions over RPC (see supabase_attempt_store)

Usage:
    from loginguard.services.attempt_store import create_attempt_store

    store = create_attempt_store(config)
    record = store.record_failure("203.0.113.7", now, 1800, 4)
"""

import math
import threading
import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterator, Optional

import redis

from loginguard.services.lockout_policy import AttemptRecord
from loginguard.utils.errors import StoreUnavailable
from loginguard.utils.structured_logger import get_logger

logger = get_logger(__name__)


def apply_failure(
    record: Optional[AttemptRecord],
    now: float,
    lockout_duration: float,
    max_attempts: int
) -> AttemptRecord:
    """Next record after one failed attempt.

    An active lock is returned unchanged. An expired lock starts a new cycle
    at one failure. Reaching max_attempts engages the lock.
    """
    if record is not None and record.is_locked(now):
        return record

    if record is None or record.lock_expired(now):
        count = 1
    else:
        count = record.failure_count + 1

    locked_until = now + lockout_duration if count >= max_attempts else None
    return AttemptRecord(
        failure_count=count,
        locked_until=locked_until,
        updated_at=now,
        lock_engaged=locked_until is not None,
    )


class AttemptStore:
    """Base class for attempt storage"""

    backend = "base"

    def load(self, key: str) -> Optional[AttemptRecord]:
        raise NotImplementedError

    def record_failure(
        self,
        key: str,
        now: float,
        lockout_duration: float,
        max_attempts: int
    ) -> AttemptRecord:
        raise NotImplementedError

    def clear(self, key: str) -> None:
        raise NotImplementedError

    def prune(self, now: float, max_idle_seconds: float) -> int:
        """Drop records idle for longer than max_idle_seconds. Returns count removed."""
        return 0

    def describe(self) -> dict:
        return {"backend": self.backend, "healthy": True}


class InMemoryAttemptStore(AttemptStore):
    """Process-local attempt storage.

    Each key has its own lock. The registry lock only guards creating and
    removing per-key locks; it is never held across a read-modify-write, so
    contention on one key does not slow down any other key.
    """

    backend = "memory"

    def __init__(
        self,
        lock_timeout: float = 2.0,
        record_ttl: float = 86400,
        prune_interval: float = 300,
    ):
        self.lock_timeout = lock_timeout
        self.record_ttl = record_ttl
        self.prune_interval = prune_interval
        self._records: Dict[str, AttemptRecord] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._last_prune: Optional[float] = None

    @contextmanager
    def _key_guard(self, key: str, operation: str) -> Iterator[None]:
        deadline = time.monotonic() + self.lock_timeout
        while True:
            with self._registry_lock:
                lock = self._key_locks.setdefault(key, threading.Lock())
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not lock.acquire(timeout=remaining):
                raise StoreUnavailable(operation, key, TimeoutError("key lock timeout"))
            # prune() may have retired this lock while we waited on it
            with self._registry_lock:
                current = self._key_locks.get(key)
            if current is lock:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def load(self, key: str) -> Optional[AttemptRecord]:
        # records are immutable and replaced wholesale, a plain read is consistent
        return self._records.get(key)

    def record_failure(
        self,
        key: str,
        now: float,
        lockout_duration: float,
        max_attempts: int
    ) -> AttemptRecord:
        with self._key_guard(key, "record_failure"):
            record = apply_failure(self._records.get(key), now, lockout_duration, max_attempts)
            self._records[key] = replace(record, lock_engaged=False)
        self._maybe_prune(now)
        return record

    def clear(self, key: str) -> None:
        with self._key_guard(key, "clear"):
            self._records.pop(key, None)

    def prune(self, now: float, max_idle_seconds: float) -> int:
        with self._registry_lock:
            candidates = list(self._key_locks.items())

        removed = 0
        for key, lock in candidates:
            if not lock.acquire(blocking=False):
                continue  # busy keys are not idle
            try:
                record = self._records.get(key)
                if record is not None:
                    if record.is_locked(now) or now - record.updated_at <= max_idle_seconds:
                        continue
                    del self._records[key]
                    removed += 1
                with self._registry_lock:
                    if self._key_locks.get(key) is lock:
                        del self._key_locks[key]
            finally:
                lock.release()
        if removed:
            logger.debug(f"Pruned {removed} idle attempt records")
        return removed

    def _maybe_prune(self, now: float) -> None:
        with self._registry_lock:
            if self._last_prune is not None and now - self._last_prune < self.prune_interval:
                return
            self._last_prune = now
        self.prune(now, self.record_ttl)

    def describe(self) -> dict:
        return {
            "backend": self.backend,
            "healthy": True,
            "records": len(self._records),
            "message": "In-memory attempt store (single instance only)",
        }


# KEYS[1] = record key
# ARGV = now, lock value (now + duration), max_attempts, ttl seconds
# Returns count, locked_until, updated_at and "1" when this call engaged the lock
RECORD_FAILURE_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local max_attempts = tonumber(ARGV[3])
local fields = redis.call('HMGET', key, 'count', 'locked_until', 'updated_at')
local count = 0
if fields[1] then count = tonumber(fields[1]) end
if fields[2] and now < tonumber(fields[2]) then
    return {tostring(count), fields[2], fields[3] or ARGV[1], "0"}
end
if fields[2] then count = 0 end
count = count + 1
redis.call('HSET', key, 'count', count, 'updated_at', ARGV[1])
local locked_until = ''
if count >= max_attempts then
    locked_until = ARGV[2]
    redis.call('HSET', key, 'locked_until', locked_until)
else
    redis.call('HDEL', key, 'locked_until')
end
redis.call('EXPIRE', key, tonumber(ARGV[4]))
return {tostring(count), locked_until, ARGV[1], locked_until ~= "" and "1" or "0"}
"""


def _decode(value) -> Optional[str]:
    if value is None or value is False:
        return None
    if isinstance(value, bytes):
        value = value.decode()
    return value or None


class RedisAttemptStore(AttemptStore):
    """Redis-backed attempt storage shared by every app instance.

    One hash per key. The failure path is a server-side Lua script, so the
    increment and the lock decision happen in one atomic step. Keys expire
    after record_ttl seconds of inactivity, which doubles as garbage
    collection.
    """

    backend = "redis"
    KEY_PREFIX = "login_guard:attempts:"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        timeout: float = 2.0,
        record_ttl: float = 86400,
        client: Optional["redis.Redis"] = None,
    ):
        self.record_ttl = record_ttl
        if client is None:
            safe_url = redis_url.split('@')[-1] if '@' in redis_url else redis_url
            logger.info(f"Connecting attempt store to Redis at {safe_url}")
            client = redis.Redis.from_url(
                redis_url,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
        self._redis = client
        self._record_failure_script = self._redis.register_script(RECORD_FAILURE_LUA)

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def ping(self) -> None:
        try:
            self._redis.ping()
        except redis.RedisError as e:
            raise StoreUnavailable("ping", cause=e) from e

    def load(self, key: str) -> Optional[AttemptRecord]:
        try:
            count, locked_until, updated_at = self._redis.hmget(
                self._key(key), "count", "locked_until", "updated_at"
            )
        except redis.RedisError as e:
            raise StoreUnavailable("load", key, e) from e
        return self._to_record("load", key, count, locked_until, updated_at)

    def record_failure(
        self,
        key: str,
        now: float,
        lockout_duration: float,
        max_attempts: int
    ) -> AttemptRecord:
        ttl = max(int(self.record_ttl), math.ceil(lockout_duration) + 1)
        try:
            result = self._record_failure_script(
                keys=[self._key(key)],
                args=[repr(now), repr(now + lockout_duration), max_attempts, ttl],
            )
        except redis.RedisError as e:
            raise StoreUnavailable("record_failure", key, e) from e
        return self._to_record("record_failure", key, *result)

    def clear(self, key: str) -> None:
        try:
            self._redis.delete(self._key(key))
        except redis.RedisError as e:
            raise StoreUnavailable("clear", key, e) from e

    def describe(self) -> dict:
        try:
            self._redis.ping()
            healthy = True
        except redis.RedisError:
            healthy = False
        return {
            "backend": self.backend,
            "healthy": healthy,
            "message": "Redis attempt store active" if healthy else "Redis attempt store unreachable",
        }

    @staticmethod
    def _to_record(operation, key, count, locked_until, updated_at, engaged=None) -> Optional[AttemptRecord]:
        count = _decode(count)
        if count is None:
            return None
        locked_until = _decode(locked_until)
        updated_at = _decode(updated_at)
        try:
            return AttemptRecord(
                failure_count=int(count),
                locked_until=float(locked_until) if locked_until is not None else None,
                updated_at=float(updated_at) if updated_at is not None else 0.0,
                lock_engaged=_decode(engaged) == "1",
            )
        except (TypeError, ValueError) as e:
            raise StoreUnavailable(operation, key, e) from e


def create_attempt_store(config) -> AttemptStore:
    """Build the store named by config.store_backend.

    Redis that cannot be reached at startup falls back to memory with a
    warning, so a missing cache never stops logins from working.
    """
    backend = config.store_backend
    if backend == "redis":
        try:
            store = RedisAttemptStore(
                config.redis_url,
                timeout=config.store_timeout_seconds,
                record_ttl=config.record_ttl_seconds,
            )
            store.ping()
            logger.info("Using Redis attempt store")
            return store
        except StoreUnavailable as e:
            logger.warning(f"Redis not available, falling back to in-memory attempt store: {e}")
    elif backend == "supabase":
        from loginguard.services.supabase_attempt_store import SupabaseAttemptStore

        logger.info("Using Supabase attempt store")
        return SupabaseAttemptStore(
            config.supabase_url,
            config.supabase_service_key,
            timeout=config.store_timeout_seconds,
            record_ttl=config.record_ttl_seconds,
        )
    else:
        logger.info("Using in-memory attempt store (set LOGIN_GUARD_STORE=redis for production)")

    return InMemoryAttemptStore(
        lock_timeout=config.store_timeout_seconds,
        record_ttl=config.record_ttl_seconds,
    )
