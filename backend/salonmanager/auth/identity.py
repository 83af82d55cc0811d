"""
Identity provider adapter.

The rest of the application sees identities only through
IdentityProvider.verify_session() and IdentityProvider.sign_out().
Anything that fails verification is the anonymous identity; callers
never see provider-specific errors from verify_session().
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from salonmanager.auth.clerk_verifier import ClerkJWTVerifier, ClerkVerificationError, get_verifier
from salonmanager.config.settings import Settings, get_settings
from salonmanager.platform.errors import TransientUpstreamError

logger = logging.getLogger(__name__)

# Cookie Clerk's frontend SDK stores the session token in
SESSION_COOKIE_NAME = "__session"


@dataclass(frozen=True)
class Identity:
    """A verified principal, or the anonymous identity when id is empty."""
    id: str
    session_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_anonymous(self) -> bool:
        return not self.id


ANONYMOUS = Identity(id="")


@dataclass(frozen=True)
class SessionCredentials:
    """Raw credentials presented by the caller."""
    bearer_token: Optional[str] = None
    session_cookie: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "SessionCredentials":
        auth_header = request.headers.get("Authorization", "")
        bearer = auth_header[7:] if auth_header.startswith("Bearer ") else None
        return cls(
            bearer_token=bearer or None,
            session_cookie=request.cookies.get(SESSION_COOKIE_NAME),
        )

    @property
    def token(self) -> Optional[str]:
        return self.bearer_token or self.session_cookie


class IdentityProvider(ABC):
    """Verified-session lookup and sign-out."""

    @abstractmethod
    def verify_session(self, credentials: SessionCredentials) -> Identity:
        """Return the verified identity, or ANONYMOUS."""

    @abstractmethod
    def sign_out(self, identity: Identity) -> None:
        """
        End the identity's session at the provider.

        Raises:
            TransientUpstreamError: If the provider call fails
        """


class ClerkIdentityProvider(IdentityProvider):
    """IdentityProvider backed by Clerk session JWTs and the Clerk Backend API."""

    REVOKE_TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        verifier: Optional[ClerkJWTVerifier] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self._verifier = verifier
        self.settings = settings or get_settings()
        self._http_client = http_client

    @property
    def verifier(self) -> ClerkJWTVerifier:
        if self._verifier is None:
            self._verifier = get_verifier()
        return self._verifier

    def verify_session(self, credentials: SessionCredentials) -> Identity:
        token = credentials.token
        if not token:
            return ANONYMOUS

        try:
            claims = self.verifier.verify_token(token)
        except ClerkVerificationError as e:
            logger.info("Session verification failed", extra={
                "error_code": e.error_code,
            })
            return ANONYMOUS

        subject = claims.get("sub")
        if not subject:
            return ANONYMOUS
        return Identity(id=subject, session_id=claims.get("sid"), email=claims.get("email"))

    def sign_out(self, identity: Identity) -> None:
        if identity.is_anonymous or not identity.session_id:
            return
        if not self.settings.clerk_secret_key:
            raise TransientUpstreamError("CLERK_SECRET_KEY not configured")

        url = f"{self.settings.clerk_api_url}/sessions/{identity.session_id}/revoke"
        headers = {"Authorization": f"Bearer {self.settings.clerk_secret_key}"}
        try:
            if self._http_client is not None:
                response = self._http_client.post(url, headers=headers, timeout=self.REVOKE_TIMEOUT_SECONDS)
            else:
                with httpx.Client(timeout=self.REVOKE_TIMEOUT_SECONDS) as client:
                    response = client.post(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Failed to revoke Clerk session", extra={
                "identity_id": identity.id,
                "session_id": identity.session_id,
                "error": str(e),
            })
            raise TransientUpstreamError(f"Session revocation failed: {e}")

        logger.info("Session revoked", extra={
            "identity_id": identity.id,
            "session_id": identity.session_id,
        })


_provider: Optional[IdentityProvider] = None


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency returning the process identity provider."""
    global _provider
    if _provider is None:
        _provider = ClerkIdentityProvider()
    return _provider
