"""
Tenant routing middleware.

Derives the tenant slug for storefront traffic once per request and
attaches it to request.state for the tenant resolver:

- Production: the first label of <slug>.<MAIN_DOMAIN>
- Local development (MAIN_DOMAIN=localhost): the first path segment

Reserved subdomains and path segments (www, api, dashboard, ...) never
name a tenant.

When TRUST_TENANT_HEADER is enabled, an X-Tenant-Id header set by the
edge proxy is passed through as the upstream tenant id. Otherwise the
header is ignored so clients cannot choose a tenant by header.
"""

import logging
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from salonmanager.config.settings import (
    RESERVED_PATH_SEGMENTS,
    RESERVED_SUBDOMAINS,
    Settings,
    get_settings,
)

logger = logging.getLogger(__name__)

TENANT_ID_HEADER = "X-Tenant-Id"


def _strip_port(host: str) -> str:
    return host.split(":", 1)[0].strip().lower()


def extract_tenant_slug(host: Optional[str], path: str, main_domain: str) -> Optional[str]:
    """
    Extract a tenant slug from the host or path.

    Args:
        host: Host header value (may include a port)
        path: Request path
        main_domain: Apex domain the app is served from

    Returns:
        Slug in lower case, or None for non-tenant traffic
    """
    hostname = _strip_port(host or "")
    main_domain = main_domain.lower()

    if main_domain != "localhost" and hostname.endswith("." + main_domain):
        subdomain = hostname[: -(len(main_domain) + 1)]
        # Only single-label subdomains name tenants
        if subdomain and "." not in subdomain and subdomain not in RESERVED_SUBDOMAINS:
            return subdomain
        return None

    if hostname in ("localhost", "127.0.0.1", "testserver") or main_domain == "localhost":
        segments = [s for s in path.split("/") if s]
        if segments:
            first = segments[0].lower()
            if first not in RESERVED_PATH_SEGMENTS:
                return first

    return None


class TenantRoutingMiddleware(BaseHTTPMiddleware):
    """Attaches tenant_slug and upstream_tenant_id to request.state."""

    def __init__(self, app, settings: Optional[Settings] = None):
        super().__init__(app)
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def dispatch(self, request: Request, call_next):
        settings = self.settings
        request.state.tenant_slug = extract_tenant_slug(
            request.headers.get("host"),
            request.url.path,
            settings.main_domain,
        )

        upstream_id = request.headers.get(TENANT_ID_HEADER)
        if upstream_id and not settings.trust_tenant_header:
            logger.warning("Ignoring untrusted tenant header", extra={
                "path": request.url.path,
            })
            upstream_id = None
        request.state.upstream_tenant_id = upstream_id or None

        return await call_next(request)
