"""
Error taxonomy for the login guard.

- StoreUnavailable: the attempt store could not be read or written in time.
  Always absorbed by RateLimitGate (fail-open read, logged write).
- InvalidKey: a client address could not be parsed. Request-level key
  extraction catches it and falls back to a default key.
- PolicyMisconfiguration: thresholds or durations that make no sense.
  Raised while loading config at startup, never at request time.
"""

from typing import Optional


class LoginGuardError(Exception):
    """Base class for login guard errors"""


class StoreUnavailable(LoginGuardError):
    """Backing storage failed or timed out."""

    def __init__(self, operation: str, key: Optional[str] = None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        detail = f"attempt store unavailable during {operation}"
        if key is not None:
            detail += f" (key={key})"
        if cause is not None:
            detail += f": {cause}"
        super().__init__(detail)


class InvalidKey(LoginGuardError, ValueError):
    """Client address could not be normalized into an attempt key."""


class PolicyMisconfiguration(LoginGuardError, ValueError):
    """Lockout policy settings are invalid."""
