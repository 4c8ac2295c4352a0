"""
Request ID Middleware for distributed tracing.

This middleware:
1. Generates a unique request ID (UUID4) for each request
2. Respects incoming X-Request-ID header for distributed tracing
3. Sets the request_id in contextvars for logging
4. Adds X-Request-ID to response headers
5. Logs request start and completion with timing

Usage in main.py:
    from loginguard.middleware.request_id_middleware import RequestIdMiddleware
    app.add_middleware(RequestIdMiddleware)  # Add LAST so it runs FIRST
"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from loginguard.utils.client_key import extract_client_key
from loginguard.utils.structured_logger import clear_context, get_logger, set_request_id

logger = get_logger(__name__)

_MAX_REQUEST_ID_LENGTH = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate request IDs.

    Add it LAST in main.py so it runs FIRST and every other middleware,
    the login guard included, logs with the request ID set.
    """

    def __init__(self, app, trust_proxy_headers: bool = True):
        super().__init__(app)
        self.trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = (request.headers.get("X-Request-ID") or "")[:_MAX_REQUEST_ID_LENGTH] or str(uuid.uuid4())
        set_request_id(request_id)
        request.state.request_id = request_id

        start_time = time.perf_counter()
        logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": extract_client_key(request, self.trust_proxy_headers),
                "user_agent": request.headers.get("User-Agent", "")[:100],
            }
        )

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                }
            )
            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed with exception",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                    "error_type": type(e).__name__,
                    "error_message": str(e)[:500],
                },
                exc_info=True
            )
            raise

        finally:
            # contextvars must not leak into the next request on this worker
            clear_context()
