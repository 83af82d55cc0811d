"""
Platform-level modules for multi-tenant access control.

- tenant_routing: Derives the tenant slug from host or path
- tenant_resolver: Resolves the tenant a request belongs to
- tenant_selection: Signed "current tenant" cookie
- access_gate: The single authorization decision point
- errors: Access and billing error taxonomy
"""

from salonmanager.platform.errors import (
    AccessError,
    AccessCheckUnavailableError,
    SignatureInvalidError,
    SubscriptionInactiveError,
    TenantNotFoundError,
    TransientUpstreamError,
    UnauthenticatedError,
    UnauthorizedError,
)

__all__ = [
    "AccessError",
    "AccessCheckUnavailableError",
    "SignatureInvalidError",
    "SubscriptionInactiveError",
    "TenantNotFoundError",
    "TransientUpstreamError",
    "UnauthenticatedError",
    "UnauthorizedError",
]
