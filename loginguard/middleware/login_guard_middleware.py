"""
Login Guard Middleware - edge interceptor for login submissions.

Requests to a login path are checked against the RateLimitGate before any
route code runs:

    PASS_THROUGH  not a login submission, untouched
    CHECK         login submission, gate consulted
    DENY          key is locked, 429 returned, nothing downstream runs
    ADMIT         request continues with the verdict on request.state

The interceptor only denies. Counting failures and clearing records happens
in the login route, which knows the credential outcome.

Usage in main.py:
    from loginguard.middleware.login_guard_middleware import LoginGuardMiddleware
    app.add_middleware(LoginGuardMiddleware, gate=gate, login_paths=config.login_paths)
"""

from enum import Enum
from typing import Iterable, Optional

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from loginguard.constants.messages import DEFAULT_LOCALE, negotiate_locale
from loginguard.services.rate_limit_gate import RateLimitGate
from loginguard.utils.client_key import extract_client_key
from loginguard.utils.error_handler import DEGRADED_HEADER, lockout_response
from loginguard.utils.structured_logger import get_logger, set_client_key

logger = get_logger(__name__)

DEFAULT_LOGIN_PATHS = ("/login", "/api/v1/auth/login")


class InterceptState(str, Enum):
    PASS_THROUGH = "pass_through"
    CHECK = "check"
    DENY = "deny"
    ADMIT = "admit"


class LoginGuardMiddleware(BaseHTTPMiddleware):
    """Deny login submissions from locked attempt keys at the edge."""

    def __init__(
        self,
        app,
        gate: RateLimitGate,
        login_paths: Optional[Iterable[str]] = None,
        trust_proxy_headers: bool = True,
        default_locale: str = DEFAULT_LOCALE,
    ):
        super().__init__(app)
        self.gate = gate
        self.login_paths = frozenset(
            p.rstrip("/") or "/" for p in (login_paths or DEFAULT_LOGIN_PATHS)
        )
        self.trust_proxy_headers = trust_proxy_headers
        self.default_locale = default_locale

    def classify(self, request: Request) -> InterceptState:
        """PASS_THROUGH or CHECK for an incoming request."""
        if request.method in ("OPTIONS", "HEAD", "GET"):
            return InterceptState.PASS_THROUGH
        path = request.url.path.rstrip("/") or "/"
        if path in self.login_paths:
            return InterceptState.CHECK
        return InterceptState.PASS_THROUGH

    async def dispatch(self, request: Request, call_next) -> Response:
        if self.classify(request) is InterceptState.PASS_THROUGH:
            return await call_next(request)

        key = extract_client_key(request, self.trust_proxy_headers)
        set_client_key(key)
        request.state.client_key = key

        verdict = await run_in_threadpool(self.gate.check_before_attempt, key)

        if verdict.locked:
            logger.info(
                "Login denied, attempt key locked",
                extra={
                    "intercept_state": InterceptState.DENY.value,
                    "path": request.url.path,
                    "remaining_seconds": verdict.remaining_seconds,
                },
            )
            locale = negotiate_locale(request.headers.get("Accept-Language"), self.default_locale)
            return lockout_response(verdict, locale)

        request.state.login_verdict = verdict
        response = await call_next(request)
        if verdict.degraded:
            response.headers[DEGRADED_HEADER] = "true"
        return response
