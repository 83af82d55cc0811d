"""
Access and billing error taxonomy.

Every failure the access gate or billing reconciler can report maps to
one of these classes. The gate and reconciler return verdicts and
results instead of raising; these exceptions are raised by the
components underneath them and by route helpers, and carry the HTTP
status they translate to.
"""

from typing import Any, Dict, Optional


class AccessError(Exception):
    """Base class for access control and billing failures."""

    status_code = 500
    error_code = "access_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class TenantNotFoundError(AccessError):
    """A tenant was explicitly named but does not exist."""

    status_code = 404
    error_code = "tenant_not_found"


class UnauthenticatedError(AccessError):
    """No valid identity for a route that requires one."""

    status_code = 401
    error_code = "unauthenticated"


class UnauthorizedError(AccessError):
    """Identity is not a member of the tenant, or its role is too low."""

    status_code = 403
    error_code = "unauthorized"


class SubscriptionInactiveError(AccessError):
    """Tenant has no entitled subscription."""

    status_code = 402
    error_code = "subscription_inactive"

    def __init__(self, reason: str, message: Optional[str] = None):
        super().__init__(message or f"Subscription inactive: {reason}", {"reason": reason})
        self.reason = reason


class SignatureInvalidError(AccessError):
    """Billing callback failed authenticity verification."""

    status_code = 401
    error_code = "signature_invalid"


class TransientUpstreamError(AccessError):
    """Identity or billing provider temporarily unavailable."""

    status_code = 502
    error_code = "upstream_unavailable"


class AccessCheckUnavailableError(AccessError):
    """The access gate could not reach a decision; the request is refused."""

    status_code = 503
    error_code = "access_check_unavailable"
