"""
User-facing login guard messages.

German is the default locale, English is available. Messages only ever talk
about the client address being locked; they never reveal whether an email
address exists.
"""

import math
from typing import Optional

DEFAULT_LOCALE = "de"

MESSAGES = {
    "de": {
        "rate_limit_exceeded": (
            "Zu viele fehlgeschlagene Login-Versuche. "
            "Bitte versuche es in {minutes} Minuten erneut."
        ),
        "captcha_required": "Zu viele fehlgeschlagene Versuche. Bitte lösen Sie das CAPTCHA.",
        "invalid_credentials": "Ungültige E-Mail oder Passwort",
        "email_not_confirmed": (
            "Bitte bestätigen Sie zuerst Ihre E-Mail-Adresse. Prüfen Sie Ihren Posteingang."
        ),
    },
    "en": {
        "rate_limit_exceeded": (
            "Too many failed login attempts. "
            "Please try again in {minutes} minutes."
        ),
        "captcha_required": "Too many failed attempts. Please solve the CAPTCHA.",
        "invalid_credentials": "Invalid email or password",
        "email_not_confirmed": "Please confirm your email address first. Check your inbox.",
    },
}

SUPPORTED_LOCALES = tuple(MESSAGES)


def lockout_minutes(remaining_seconds: int) -> int:
    """Minutes shown to the user, rounded up so a lock never reads as 0."""
    return max(1, math.ceil(remaining_seconds / 60))


def negotiate_locale(accept_language: Optional[str], default: str = DEFAULT_LOCALE) -> str:
    """Pick the first supported language from an Accept-Language header.

    q-values are ignored; browsers already send languages in preference order.
    """
    if accept_language:
        for part in accept_language.split(","):
            tag = part.split(";", 1)[0].strip().lower()
            primary = tag.split("-", 1)[0]
            if primary in MESSAGES:
                return primary
    return default if default in MESSAGES else DEFAULT_LOCALE


def get_message(code: str, locale: str = DEFAULT_LOCALE, **params) -> str:
    catalog = MESSAGES.get(locale, MESSAGES[DEFAULT_LOCALE])
    template = catalog.get(code) or MESSAGES[DEFAULT_LOCALE][code]
    return template.format(**params)


def lockout_message(remaining_seconds: int, locale: str = DEFAULT_LOCALE) -> str:
    return get_message("rate_limit_exceeded", locale, minutes=lockout_minutes(remaining_seconds))
