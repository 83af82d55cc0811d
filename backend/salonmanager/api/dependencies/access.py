"""
Access check dependencies.

require_access(level) is the only way routes enforce authorization. It
runs the access gate and turns its verdict into HTTP:

- Allow: the dependency returns the Allow (identity, tenant, role)
- RedirectTo: 303 with Location for browsers; for JSON clients the
  matching error status (401 sign-in, 402 pricing, 403 onboarding)
  with redirect_to in the body
- Deny: HTTPException with the verdict's status
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from salonmanager.auth.identity import IdentityProvider, get_identity_provider
from salonmanager.config.settings import get_settings
from salonmanager.constants.permissions import AccessLevel
from salonmanager.database.session import get_db_session
from salonmanager.platform.access_gate import (
    REASON_ONBOARDING_REQUIRED,
    REASON_SIGN_IN_REQUIRED,
    AccessGate,
    AccessRequest,
    Allow,
    Deny,
    RedirectTo,
)
from salonmanager.platform.errors import (
    AccessError,
    SubscriptionInactiveError,
    UnauthenticatedError,
    UnauthorizedError,
)
from salonmanager.platform.tenant_selection import TenantSelectionCodec

logger = logging.getLogger(__name__)


def get_selection_codec() -> Optional[TenantSelectionCodec]:
    """Selection codec, or None when APP_SECRET_KEY is not configured."""
    try:
        return TenantSelectionCodec()
    except ValueError:
        logger.warning("APP_SECRET_KEY not configured, tenant selection disabled")
        return None


def get_access_gate(
    db_session: Session = Depends(get_db_session),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    selection_codec: Optional[TenantSelectionCodec] = Depends(get_selection_codec),
) -> AccessGate:
    return AccessGate(db_session, identity_provider, selection_codec)


def _wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept and "text/html" not in accept


def _redirect_error(verdict: RedirectTo) -> AccessError:
    if verdict.reason == REASON_SIGN_IN_REQUIRED:
        return UnauthenticatedError("Sign-in required")
    if verdict.reason == REASON_ONBOARDING_REQUIRED:
        return UnauthorizedError("No tenant selected")
    return SubscriptionInactiveError(verdict.reason)


def verdict_to_http(request: Request, verdict) -> Allow:
    """Return the Allow or raise the HTTP equivalent of the verdict."""
    if isinstance(verdict, Allow):
        return verdict

    if isinstance(verdict, RedirectTo):
        if _wants_json(request):
            error = _redirect_error(verdict)
            raise HTTPException(
                status_code=error.status_code,
                detail={**error.to_dict(), "redirect_to": verdict.target},
            )
        raise HTTPException(
            status_code=status.HTTP_303_SEE_OTHER,
            detail={"redirect_to": verdict.target, "reason": verdict.reason},
            headers={"Location": verdict.target},
        )

    if isinstance(verdict, Deny):
        raise HTTPException(status_code=verdict.status_code, detail=verdict.error.to_dict())

    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unknown verdict")


def require_access(level: AccessLevel) -> Callable:
    """
    Factory for access check dependencies.

    Args:
        level: Required access level

    Returns:
        A FastAPI dependency returning the gate's Allow
    """

    def check_access(request: Request, gate: AccessGate = Depends(get_access_gate)) -> Allow:
        access_request = AccessRequest.from_request(
            request,
            slug=request.path_params.get("slug"),
            settings=get_settings(),
        )
        return verdict_to_http(request, gate.decide(access_request, level))

    return check_access


# Pre-configured checks
require_public = require_access(AccessLevel.PUBLIC)
require_authenticated = require_access(AccessLevel.AUTHENTICATED)
require_member = require_access(AccessLevel.MEMBER)
require_admin_or_owner = require_access(AccessLevel.ADMIN_OR_OWNER)
require_subscription = require_access(AccessLevel.SUBSCRIPTION_ACTIVE)
