"""
Admin Routes - Attempt record inspection and reset

Endpoints for:
- Inspecting the lockout status of an attempt key
- Clearing an attempt key (support unlocking a user's address)

These endpoints require admin authentication (X-Admin-Token header).
"""

import hmac
import logging
import os

from fastapi import APIRouter, Depends, Header, HTTPException
from starlette.concurrency import run_in_threadpool

from loginguard.api.auth_routes import get_gate
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.client_key import normalize_address
from loginguard.utils.errors import InvalidKey

logger = logging.getLogger(__name__)

admin_router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


# ==================== Admin Auth Dependency ====================

def verify_admin_token(x_admin_token: str = Header(None, alias="X-Admin-Token")) -> bool:
    """Verify admin authentication token. Closed when ADMIN_API_TOKEN is unset."""
    admin_token = os.getenv("ADMIN_API_TOKEN")

    if not admin_token:
        logger.warning("No ADMIN_API_TOKEN configured - admin endpoints are disabled")
        raise HTTPException(status_code=503, detail="Admin API not configured")

    if not x_admin_token or not hmac.compare_digest(x_admin_token, admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")

    return True


def _attempt_key(raw: str) -> str:
    """Accept addresses in any notation the middleware would have normalized."""
    try:
        return normalize_address(raw)
    except InvalidKey:
        return raw.strip()


# ==================== Rate Limit Endpoints ====================

@admin_router.get("/rate-limit/{key}")
async def get_rate_limit_status(
    key: str,
    gate: RateLimitGate = Depends(get_gate),
    admin_verified: bool = Depends(verify_admin_token)
):
    """Lockout status of an attempt key."""
    attempt_key = _attempt_key(key)
    verdict = await run_in_threadpool(gate.check_before_attempt, attempt_key)
    return {"key": attempt_key, **verdict.to_dict()}


@admin_router.delete("/rate-limit/{key}")
async def reset_rate_limit(
    key: str,
    gate: RateLimitGate = Depends(get_gate),
    admin_verified: bool = Depends(verify_admin_token)
):
    """Clear the attempt record of a key, lifting any lockout."""
    attempt_key = _attempt_key(key)
    cleared = await run_in_threadpool(gate.record_success, attempt_key)
    if not cleared:
        raise HTTPException(status_code=503, detail="Attempt store unavailable, record not cleared")

    logger.info(f"Admin cleared attempt record for {attempt_key}")
    return {"success": True, "key": attempt_key}
