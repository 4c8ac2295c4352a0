"""
Supabase (Postgres) attempt storage.

All state changes happen inside Postgres functions defined in
migrations/001_login_attempts.sql. Each function is a single statement
(INSERT ... ON CONFLICT DO UPDATE, or DELETE), so Postgres row locking
serializes concurrent failures for the same address without any
application-side locking.

RPC functions:
    login_guard_load(p_key)
    login_guard_record_failure(p_key, p_now, p_lockout_seconds, p_max_attempts)
    login_guard_clear(p_key)
    login_guard_prune(p_before)

Idle rows are pruned opportunistically from record_failure, at most once
every prune_interval seconds.
"""

import re
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client
from supabase.client import ClientOptions

from loginguard.services.attempt_store import AttemptStore
from loginguard.services.lockout_policy import AttemptRecord
from loginguard.utils.errors import StoreUnavailable
from loginguard.utils.structured_logger import get_logger

logger = get_logger(__name__)


_FRACTION = re.compile(r'\.(\d+)')


def _to_epoch(value: Any) -> Optional[float]:
    """Postgres timestamptz arrives as an ISO-8601 string.

    PostgREST trims trailing zeros from fractional seconds, which
    datetime.fromisoformat() before Python 3.11 rejects, so the fraction is
    padded to microseconds first.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace('Z', '+00:00')
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class SupabaseAttemptStore(AttemptStore):
    """Attempt storage in the login_attempts table, accessed over RPC."""

    backend = "supabase"

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        timeout: float = 2.0,
        record_ttl: float = 86400,
        prune_interval: float = 300,
        client: Optional[Client] = None,
    ):
        if client is None:
            client = create_client(
                supabase_url,
                supabase_key,
                options=ClientOptions(postgrest_client_timeout=timeout),
            )
        self.client = client
        self.record_ttl = record_ttl
        self.prune_interval = prune_interval
        self._last_prune: Optional[float] = None
        self._prune_lock = threading.Lock()

    def _rpc(self, function: str, params: Dict[str, Any], operation: str, key: Optional[str] = None):
        try:
            return self.client.rpc(function, params).execute().data
        except (APIError, httpx.HTTPError) as e:
            raise StoreUnavailable(operation, key, e) from e

    @staticmethod
    def _to_record(rows, operation: str, key: Optional[str]) -> Optional[AttemptRecord]:
        if isinstance(rows, list):
            rows = rows[0] if rows else None
        if not rows:
            return None
        try:
            return AttemptRecord(
                failure_count=int(rows["failure_count"]),
                locked_until=_to_epoch(rows.get("locked_until")),
                updated_at=_to_epoch(rows.get("updated_at")) or 0.0,
                lock_engaged=bool(rows.get("lock_engaged", False)),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise StoreUnavailable(operation, key, e) from e

    def load(self, key: str) -> Optional[AttemptRecord]:
        rows = self._rpc("login_guard_load", {"p_key": key}, "load", key)
        return self._to_record(rows, "load", key)

    def record_failure(
        self,
        key: str,
        now: float,
        lockout_duration: float,
        max_attempts: int
    ) -> AttemptRecord:
        rows = self._rpc(
            "login_guard_record_failure",
            {
                "p_key": key,
                "p_now": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
                "p_lockout_seconds": lockout_duration,
                "p_max_attempts": max_attempts,
            },
            "record_failure",
            key,
        )
        record = self._to_record(rows, "record_failure", key)
        if record is None:
            raise StoreUnavailable("record_failure", key, ValueError("empty RPC result"))
        self._maybe_prune(now)
        return record

    def clear(self, key: str) -> None:
        self._rpc("login_guard_clear", {"p_key": key}, "clear", key)

    def prune(self, now: float, max_idle_seconds: float) -> int:
        before = datetime.fromtimestamp(now - max_idle_seconds, tz=timezone.utc).isoformat()
        removed = self._rpc("login_guard_prune", {"p_before": before}, "prune")
        try:
            return int(removed or 0)
        except (TypeError, ValueError) as e:
            raise StoreUnavailable("prune", cause=e) from e

    def _maybe_prune(self, now: float) -> None:
        with self._prune_lock:
            if self._last_prune is not None and now - self._last_prune < self.prune_interval:
                return
            self._last_prune = now
        try:
            removed = self.prune(now, self.record_ttl)
        except StoreUnavailable as e:
            logger.warning(f"Pruning idle attempt records failed: {e}")
            return
        if removed:
            logger.debug(f"Pruned {removed} idle attempt records")

    def describe(self) -> dict:
        try:
            self._rpc("login_guard_load", {"p_key": "__health__"}, "describe")
            healthy = True
        except StoreUnavailable as e:
            logger.warning(f"Supabase attempt store health check failed: {e}")
            healthy = False
        return {
            "backend": self.backend,
            "healthy": healthy,
            "message": "Supabase attempt store active" if healthy else "Supabase attempt store unreachable",
        }
