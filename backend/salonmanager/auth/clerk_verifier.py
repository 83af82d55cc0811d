"""
Signature and claim checks for Clerk session tokens.

Tokens are RS256 JWTs signed by the Clerk instance named in
CLERK_ISSUER_URL; the public keys come from that instance's JWKS
document. See https://clerk.com/docs/backend-requests/handling/manual-jwt
"""

import time
import logging
from typing import Optional, Dict, Any
from threading import Lock

import jwt
from jwt import PyJWKClient, PyJWKClientError
from jwt.exceptions import (
    InvalidTokenError,
    ExpiredSignatureError,
    InvalidIssuerError,
)

from salonmanager.config.settings import get_settings

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "iss", "exp", "iat"]


class ClerkVerificationError(Exception):
    """A session token was missing, malformed, expired or not signed by Clerk."""

    def __init__(self, message: str, error_code: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ClerkJWTVerifier:
    """
    Checks a Clerk session JWT and hands back its claims.

    The claims the rest of the app reads are ``sub`` (the Clerk user id,
    e.g. "user_2abc123") and ``sid`` (the Clerk session id).
    """

    # Seconds before the JWKS client is rebuilt and keys refetched
    KEY_REFRESH_SECONDS = 60 * 60
    LEEWAY_SECONDS = 60

    def __init__(self, issuer: Optional[str] = None, jwks_url: Optional[str] = None):
        issuer = issuer or get_settings().clerk_issuer_url
        if not issuer:
            raise ClerkVerificationError(
                "CLERK_ISSUER_URL must be set to verify sessions",
                error_code="config_error",
            )
        self.issuer = issuer
        self.jwks_url = jwks_url or issuer.rstrip("/") + "/.well-known/jwks.json"

        self._keys: Optional[PyJWKClient] = None
        self._keys_built_at = 0.0
        self._keys_lock = Lock()

        logger.info("Clerk verifier ready", extra={"issuer": self.issuer, "jwks_url": self.jwks_url})

    def _get_jwks_client(self) -> PyJWKClient:
        with self._keys_lock:
            now = time.time()
            stale = now - self._keys_built_at > self.KEY_REFRESH_SECONDS
            if self._keys is None or stale:
                self._keys = PyJWKClient(
                    self.jwks_url, cache_keys=True, lifespan=self.KEY_REFRESH_SECONDS
                )
                self._keys_built_at = now
                logger.debug("JWKS client rebuilt", extra={"jwks_url": self.jwks_url})
            return self._keys

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Return the claims of ``token`` once its signature, issuer and
        lifetime check out. An ``Authorization`` style "Bearer " prefix
        is tolerated.

        Raises:
            ClerkVerificationError: with an ``error_code`` naming the check
                that failed
        """
        token = (token or "").removeprefix("Bearer ")
        if not token:
            raise ClerkVerificationError("Token is required", error_code="missing_token")

        try:
            key = self._get_jwks_client().get_signing_key_from_jwt(token).key
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                issuer=self.issuer,
                leeway=self.LEEWAY_SECONDS,
                # Clerk session tokens carry no aud
                options={"verify_aud": False, "require": REQUIRED_CLAIMS},
            )
        except ExpiredSignatureError:
            raise ClerkVerificationError("Token has expired", error_code="token_expired")
        except InvalidIssuerError:
            raise ClerkVerificationError("Invalid token issuer", error_code="invalid_issuer")
        except PyJWKClientError as e:
            logger.error("Could not load Clerk signing key", extra={"error": str(e)})
            raise ClerkVerificationError(f"Signing key unavailable: {e}", error_code="jwks_error")
        except InvalidTokenError as e:
            raise ClerkVerificationError(f"Invalid token: {e}", error_code="invalid_token")

        logger.debug("Clerk session verified", extra={"sub": claims.get("sub"), "sid": claims.get("sid")})
        return claims


_shared: Optional[ClerkJWTVerifier] = None
_shared_lock = Lock()


def get_verifier() -> ClerkJWTVerifier:
    """Verifier shared across requests, configured from settings."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = ClerkJWTVerifier()
        return _shared
