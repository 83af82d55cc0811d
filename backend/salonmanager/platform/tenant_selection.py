"""
Tenant selection token.

The selection remembers which tenant a multi-tenant user is working in.
It is a UX default only: the access gate re-checks membership and
subscription for the selected tenant on every request.

Token format: HS256 JWT signed with APP_SECRET_KEY, claims
    {"tid": <tenant_id>, "aud": "tenant-selection", "iat", "exp"}

Cookie attributes: 30-day max age, path "/", Secure in production,
SameSite=lax, HttpOnly.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError
from fastapi import Response

from salonmanager.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

SELECTION_ALGORITHM = "HS256"
SELECTION_AUDIENCE = "tenant-selection"


class TenantSelectionCodec:
    """Signs and verifies tenant selection tokens."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        if not self.settings.app_secret_key:
            raise ValueError("APP_SECRET_KEY environment variable is required")
        self._secret = self.settings.app_secret_key

    def encode(self, tenant_id: str, now: Optional[datetime] = None) -> str:
        """Create a signed selection token for tenant_id."""
        issued_at = now or datetime.now(timezone.utc)
        claims = {
            "tid": tenant_id,
            "aud": SELECTION_AUDIENCE,
            "iat": issued_at,
            "exp": issued_at + timedelta(days=self.settings.selection_max_age_days),
        }
        return jwt.encode(claims, self._secret, algorithm=SELECTION_ALGORITHM)

    def decode(self, token: Optional[str]) -> Optional[str]:
        """
        Verify a selection token and return its tenant id.

        Invalid, expired or foreign tokens count as no selection.

        Args:
            token: Raw cookie value

        Returns:
            Selected tenant id, or None
        """
        if not token:
            return None
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[SELECTION_ALGORITHM],
                audience=SELECTION_AUDIENCE,
                options={"require": ["tid", "exp"]},
            )
        except InvalidTokenError as e:
            logger.info("Ignoring invalid tenant selection", extra={"error": str(e)})
            return None

        tenant_id = claims.get("tid")
        return tenant_id if isinstance(tenant_id, str) and tenant_id else None

    def set_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=self.settings.selection_cookie_name,
            value=token,
            max_age=self.settings.selection_max_age_seconds,
            path="/",
            secure=self.settings.is_production,
            httponly=True,
            samesite="lax",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.settings.selection_cookie_name,
            path="/",
            secure=self.settings.is_production,
            httponly=True,
            samesite="lax",
        )
