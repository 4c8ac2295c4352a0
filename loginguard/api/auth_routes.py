"""
Authentication API Routes

Password login guarded by the RateLimitGate.

The LoginGuardMiddleware has already denied locked keys by the time a request
reaches login(); the route handles the rest of the attempt:

    CAPTCHA required, no token  -> 400, nothing verified, nothing counted
    credentials verify          -> 200 with session, record cleared
    credentials rejected        -> failure counted; 429 if that locked the
                                   key, otherwise 401
    verifier crashed            -> 500, not counted
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from starlette.concurrency import run_in_threadpool

from loginguard.constants.messages import DEFAULT_LOCALE, get_message, negotiate_locale
from loginguard.services.credential_verifier import CredentialVerifier
from loginguard.services.lockout_policy import Verdict
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.client_key import extract_client_key
from loginguard.utils.error_handler import (
    CAPTCHA_REQUIRED,
    EMAIL_NOT_CONFIRMED,
    INVALID_CREDENTIALS,
    degraded_headers,
    lockout_response,
    login_error_response,
    safe_error_response,
)
from loginguard.utils.structured_logger import set_client_key

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])

_CREDENTIAL_ERRORS = (INVALID_CREDENTIALS, EMAIL_NOT_CONFIRMED)


# ==================== Pydantic Models ====================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    captcha_token: Optional[str] = None


class LoginResponse(BaseModel):
    success: bool
    session: dict = {}


# ==================== Dependencies ====================

def get_gate(request: Request) -> RateLimitGate:
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise HTTPException(status_code=500, detail="Login guard not configured")
    return gate


def get_verifier(request: Request) -> CredentialVerifier:
    verifier = getattr(request.app.state, "verifier", None)
    if verifier is None:
        raise HTTPException(status_code=500, detail="Platform auth not configured")
    return verifier


def get_locale(request: Request) -> str:
    default = getattr(request.app.state, "default_locale", DEFAULT_LOCALE)
    return negotiate_locale(request.headers.get("Accept-Language"), default)


def get_attempt_key(request: Request) -> str:
    """Attempt key set by the middleware, derived here if the route runs unguarded."""
    key = getattr(request.state, "client_key", None)
    if key is None:
        trust = getattr(request.app.state, "trust_proxy_headers", True)
        key = extract_client_key(request, trust)
        set_client_key(key)
    return key


async def _verdict_for(request: Request, gate: RateLimitGate, key: str) -> Verdict:
    verdict = getattr(request.state, "login_verdict", None)
    if verdict is None:
        verdict = await run_in_threadpool(gate.check_before_attempt, key)
    return verdict


# ==================== Auth Endpoints ====================

@auth_router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    gate: RateLimitGate = Depends(get_gate),
    verifier: CredentialVerifier = Depends(get_verifier),
    locale: str = Depends(get_locale),
):
    """
    Authenticate user with email and password.

    Returns the identity provider's session on success. Failed attempts are
    counted per client address; after too many the address has to solve a
    CAPTCHA and eventually gets locked out.
    """
    key = get_attempt_key(request)
    verdict = await _verdict_for(request, gate, key)

    if verdict.locked:
        return lockout_response(verdict, locale)

    if verdict.captcha_required and not login_data.captcha_token:
        return login_error_response(
            400,
            CAPTCHA_REQUIRED,
            get_message(CAPTCHA_REQUIRED, locale),
            headers=degraded_headers(verdict),
            captcha_required=True,
            attempts=verdict.attempts,
        )

    try:
        result = await verifier.verify(login_data.email, login_data.password)
    except Exception as e:
        raise safe_error_response(500, "verifying credentials", e, logger)

    if result.success:
        await run_in_threadpool(gate.record_success, key)
        return {"success": True, "session": result.session}

    failure = await run_in_threadpool(gate.record_failure, key)
    if failure.locked:
        return lockout_response(failure, locale)

    error = result.error if result.error in _CREDENTIAL_ERRORS else INVALID_CREDENTIALS
    return login_error_response(
        401,
        error,
        get_message(error, locale),
        headers=degraded_headers(failure),
        captcha_required=failure.captcha_required,
        attempts=failure.attempts,
    )
