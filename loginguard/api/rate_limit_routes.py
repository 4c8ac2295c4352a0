"""
Rate Limit Status Routes

Lets the login page show the lockout countdown before the user submits. The
countdown is advisory only; the gate decides again on every login.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from loginguard.api.auth_routes import get_attempt_key, get_gate, get_locale
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.error_handler import degraded_headers, lockout_response

rate_limit_router = APIRouter(prefix="/api/v1/rate-limit", tags=["Rate Limit"])


@rate_limit_router.post("/check")
async def check_rate_limit(
    request: Request,
    gate: RateLimitGate = Depends(get_gate),
    locale: str = Depends(get_locale),
):
    """Current lockout status for the caller's address. 429 while locked."""
    key = get_attempt_key(request)
    verdict = await run_in_threadpool(gate.check_before_attempt, key)
    if verdict.locked:
        return lockout_response(verdict, locale, attempts=verdict.attempts)
    return JSONResponse(content=verdict.to_dict(), headers=degraded_headers(verdict))
