"""
Credential verification - Supabase Auth Integration

The login guard only needs one bit from the identity provider: did these
credentials verify. The failure reason is carried through for the response
body, but the guard counts every failure the same way.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from supabase import Client, create_client
from supabase_auth.errors import AuthApiError

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "invalid_credentials"
EMAIL_NOT_CONFIRMED = "email_not_confirmed"


@dataclass
class VerificationResult:
    """Outcome of a credential check.

    session is the identity provider's session payload, passed through to the
    client untouched on success.
    """
    success: bool
    error: Optional[str] = None
    session: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, session: Dict[str, Any]) -> "VerificationResult":
        return cls(success=True, session=session)

    @classmethod
    def failed(cls, error: str = INVALID_CREDENTIALS) -> "VerificationResult":
        return cls(success=False, error=error)


class CredentialVerifier(Protocol):
    async def verify(self, email: str, password: str) -> VerificationResult:
        ...


class SupabaseCredentialVerifier:
    """Password sign-in against Supabase Auth."""

    def __init__(self, supabase_url: str, supabase_key: str, client: Optional[Client] = None):
        self.client: Client = client or create_client(supabase_url, supabase_key)

    def _sign_in(self, email: str, password: str):
        return self.client.auth.sign_in_with_password({"email": email, "password": password})

    async def verify(self, email: str, password: str) -> VerificationResult:
        """
        Authenticate with email/password.

        Returns:
            VerificationResult; AuthApiError becomes a typed failure.
            Any other exception propagates to the caller.
        """
        try:
            auth_response = await asyncio.to_thread(self._sign_in, email, password)
        except AuthApiError as e:
            message = str(getattr(e, "message", e))
            if "Email not confirmed" in message:
                return VerificationResult.failed(EMAIL_NOT_CONFIRMED)
            logger.info(f"Credential verification failed: {message}")
            return VerificationResult.failed(INVALID_CREDENTIALS)

        if not auth_response.user or not auth_response.session:
            return VerificationResult.failed(INVALID_CREDENTIALS)

        session = auth_response.session
        return VerificationResult.ok({
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": session.expires_at,
            "user": {
                "id": str(auth_response.user.id),
                "email": auth_response.user.email,
            },
        })
