"""
Error responses for login guard endpoints.

Two kinds of failure leave this service:

1. Expected login outcomes (rate limited, CAPTCHA missing, bad credentials).
   These carry a stable machine-readable error code plus a localized message
   and are built with login_error_response().
2. Unexpected exceptions. Internal details are logged with a traceback and the
   client only sees a generic message, via safe_error_response().

Usage:
    from loginguard.utils.error_handler import login_error_response, safe_error_response

    return login_error_response(429, "rate_limit_exceeded", message,
                                remaining_seconds=900, locked=True)

    except Exception as e:
        raise safe_error_response(500, "verifying credentials", e, logger)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from loginguard.constants.messages import lockout_message

RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
CAPTCHA_REQUIRED = "captcha_required"
INVALID_CREDENTIALS = "invalid_credentials"
EMAIL_NOT_CONFIRMED = "email_not_confirmed"

DEGRADED_HEADER = "X-RateLimit-Degraded"


def login_error_response(
    status_code: int,
    error: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    **fields: Any
) -> JSONResponse:
    """Build the JSON body shared by every expected login failure.

    Args:
        status_code: HTTP status (400, 401, 429)
        error: Stable error code, e.g. "rate_limit_exceeded"
        message: Localized, human-readable message
        headers: Extra response headers (Retry-After, degraded marker)
        **fields: Additional body fields (remaining_seconds, locked, attempts...)
    """
    content: Dict[str, Any] = {"error": error, "message": message}
    content.update(fields)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def degraded_headers(verdict) -> Dict[str, str]:
    """Marker header for verdicts produced while the attempt store was down."""
    return {DEGRADED_HEADER: "true"} if verdict.degraded else {}


def lockout_response(verdict, locale: str, **fields: Any) -> JSONResponse:
    """429 for a locked attempt key, with Retry-After."""
    headers = {"Retry-After": str(verdict.remaining_seconds)}
    headers.update(degraded_headers(verdict))
    return login_error_response(
        429,
        RATE_LIMIT_EXCEEDED,
        lockout_message(verdict.remaining_seconds, locale),
        headers=headers,
        remaining_seconds=verdict.remaining_seconds,
        locked=True,
        **fields
    )


def safe_error_response(
    status_code: int,
    operation: str,
    exception: Exception,
    logger: logging.Logger
) -> HTTPException:
    """
    Create an HTTPException that doesn't expose internal details.

    Logs the full exception with traceback, then returns an HTTPException
    with a generic user-facing message.

    Args:
        status_code: HTTP status code (e.g., 500, 502)
        operation: What failed, e.g. "verifying credentials"
        exception: The caught exception
        logger: Logger instance for recording the error
    """
    logger.error(f"{operation} failed: {exception}", exc_info=True)

    if status_code >= 500:
        detail = f"An internal error occurred while {operation}. Please try again later."
    else:
        detail = f"Error while {operation}. Please check your request and try again."

    return HTTPException(status_code=status_code, detail=detail)
