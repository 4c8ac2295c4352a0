"""
Constants module for the login guard
"""

from .messages import (
    DEFAULT_LOCALE,
    MESSAGES,
    SUPPORTED_LOCALES,
    get_message,
    lockout_message,
    lockout_minutes,
    negotiate_locale,
)

__all__ = [
    "DEFAULT_LOCALE",
    "MESSAGES",
    "SUPPORTED_LOCALES",
    "get_message",
    "lockout_message",
    "lockout_minutes",
    "negotiate_locale",
]
