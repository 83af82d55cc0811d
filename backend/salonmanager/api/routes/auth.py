"""
Sign-out route.

Revokes the identity provider session, clears the session and tenant
selection cookies, and sends the browser back to the storefront it came
from (or the site root).
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from salonmanager.api.dependencies.access import get_selection_codec
from salonmanager.auth.identity import (
    SESSION_COOKIE_NAME,
    IdentityProvider,
    SessionCredentials,
    get_identity_provider,
)
from salonmanager.config.settings import RESERVED_PATH_SEGMENTS
from salonmanager.platform.errors import TransientUpstreamError
from salonmanager.services.tenant_service import SLUG_PATTERN

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def storefront_redirect_path(referer: Optional[str]) -> str:
    """/<slug> when the referer was a tenant storefront page, else /."""
    if not referer:
        return "/"
    segments = [s for s in urlparse(referer).path.split("/") if s]
    if segments:
        first = segments[0].lower()
        if first not in RESERVED_PATH_SEGMENTS and SLUG_PATTERN.match(first):
            return f"/{first}"
    return "/"


@router.api_route("/signout", methods=["GET", "POST"])
async def sign_out(
    request: Request,
    identity_provider: IdentityProvider = Depends(get_identity_provider),
):
    """Sign out and redirect to the tenant storefront or the site root."""
    identity = identity_provider.verify_session(SessionCredentials.from_request(request))

    try:
        identity_provider.sign_out(identity)
    except TransientUpstreamError as e:
        # Local cookies are cleared regardless; the provider session expires on its own
        logger.error("Sign-out at identity provider failed", extra={
            "identity_id": identity.id,
            "error": e.message,
        })

    response = RedirectResponse(
        url=storefront_redirect_path(request.headers.get("referer")),
        status_code=status.HTTP_303_SEE_OTHER,
    )
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    codec = get_selection_codec()
    if codec is not None:
        codec.clear_cookie(response)

    logger.info("Signed out", extra={"identity_id": identity.id or None})
    return response
