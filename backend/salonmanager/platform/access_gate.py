"""
Access gate: the single authorization decision point.

decide(request, level) checks, in order:
1. Tenant: an explicitly named tenant that does not exist is a 404 at
   every level, before anything about the caller is looked at.
2. Identity: anonymous callers of authenticated+ routes are sent to
   sign-in with a return path.
3. Membership: member+ routes with no tenant at all go to onboarding;
   a tenant without a membership for the caller is a 403.
4. Role: admin_or_owner routes deny staff.
5. Subscription: subscription_active routes need an entitled
   subscription; otherwise the caller goes to pricing with a reason.

The gate never raises. Any internal failure is logged and becomes a
Deny (fail closed).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union
from urllib.parse import urlencode

from fastapi import Request
from sqlalchemy.orm import Session

from salonmanager.auth.identity import ANONYMOUS, Identity, IdentityProvider, SessionCredentials
from salonmanager.config.settings import Settings, get_settings
from salonmanager.constants.permissions import (
    AccessLevel,
    MemberRole,
    is_elevated_role,
    requires_identity,
    requires_membership,
)
from salonmanager.platform.errors import (
    AccessCheckUnavailableError,
    AccessError,
    TenantNotFoundError,
    UnauthorizedError,
)
from salonmanager.platform.tenant_resolver import TenantRef, TenantResolver
from salonmanager.platform.tenant_selection import TenantSelectionCodec
from salonmanager.repositories.subscription_repository import SubscriptionRepository
from salonmanager.services.membership_service import MembershipService
from salonmanager.services.subscription_state import evaluate

logger = logging.getLogger(__name__)

# Redirect reasons besides the subscription denial reasons
REASON_SIGN_IN_REQUIRED = "sign_in_required"
REASON_ONBOARDING_REQUIRED = "onboarding_required"


@dataclass(frozen=True)
class AccessRequest:
    """Everything the gate needs to know about a request."""
    path: str
    credentials: SessionCredentials = field(default_factory=SessionCredentials)
    slug: Optional[str] = None
    upstream_tenant_id: Optional[str] = None
    selection_token: Optional[str] = None
    query_string: str = ""

    @property
    def return_to(self) -> str:
        """Original path and query, for redirecting back after sign-in."""
        if self.query_string:
            return f"{self.path}?{self.query_string}"
        return self.path

    @classmethod
    def from_request(
        cls,
        request: Request,
        slug: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> "AccessRequest":
        """
        Build an AccessRequest from a FastAPI request.

        A slug path parameter wins over the slug derived by the routing
        middleware.
        """
        settings = settings or get_settings()
        state = request.state
        return cls(
            path=request.url.path,
            credentials=SessionCredentials.from_request(request),
            slug=slug if slug is not None else getattr(state, "tenant_slug", None),
            upstream_tenant_id=getattr(state, "upstream_tenant_id", None),
            selection_token=request.cookies.get(settings.selection_cookie_name),
            query_string=request.url.query,
        )


@dataclass(frozen=True)
class Allow:
    """Access granted, with the context the gate established."""
    identity: Identity
    tenant: Optional[TenantRef] = None
    role: Optional[MemberRole] = None


@dataclass(frozen=True)
class RedirectTo:
    """Access not granted; the caller has a next step at target."""
    target: str
    reason: str


@dataclass(frozen=True)
class Deny:
    """Access refused outright."""
    error: AccessError

    @property
    def status_code(self) -> int:
        return self.error.status_code


Verdict = Union[Allow, RedirectTo, Deny]


class AccessGate:
    """Decides Allow / RedirectTo / Deny for a request at an access level."""

    def __init__(
        self,
        db_session: Session,
        identity_provider: IdentityProvider,
        selection_codec: Optional[TenantSelectionCodec] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the gate.

        Args:
            db_session: Database session (read-only use)
            identity_provider: Session verifier
            selection_codec: Tenant selection codec (None ignores selections)
            settings: Settings (defaults to process settings)
            clock: Returns the current time (defaults to UTC now)
        """
        self.db = db_session
        self.identity_provider = identity_provider
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolver = TenantResolver(db_session, selection_codec)
        self.memberships = MembershipService(db_session)
        self.subscriptions = SubscriptionRepository(db_session)

    def sign_in_redirect(self, request: AccessRequest) -> RedirectTo:
        query = urlencode({"redirect_to": request.return_to})
        return RedirectTo(target=f"{self.settings.sign_in_path}?{query}", reason=REASON_SIGN_IN_REQUIRED)

    def onboarding_redirect(self) -> RedirectTo:
        return RedirectTo(target=self.settings.onboarding_path, reason=REASON_ONBOARDING_REQUIRED)

    def pricing_redirect(self, reason: str) -> RedirectTo:
        query = urlencode({"reason": reason})
        return RedirectTo(target=f"{self.settings.pricing_path}?{query}", reason=reason)

    def decide(self, request: AccessRequest, level: AccessLevel) -> Verdict:
        """
        Decide whether the request may proceed at the given level.

        Args:
            request: Request context
            level: Required access level

        Returns:
            Allow, RedirectTo or Deny; never raises
        """
        try:
            verdict = self._decide(request, level)
        except Exception as e:
            logger.error("Access check failed, denying", extra={
                "path": request.path,
                "level": level.value,
                "error": str(e),
            }, exc_info=True)
            return Deny(AccessCheckUnavailableError("Access check unavailable"))

        if not isinstance(verdict, Allow):
            logger.info("Access not granted", extra={
                "path": request.path,
                "level": level.value,
                "verdict": type(verdict).__name__,
                "reason": (
                    verdict.reason if isinstance(verdict, RedirectTo)
                    else verdict.error.error_code
                ),
            })
        return verdict

    def _decide(self, request: AccessRequest, level: AccessLevel) -> Verdict:
        # 1. Tenant
        resolution = self.resolver.resolve(
            slug=request.slug,
            upstream_tenant_id=request.upstream_tenant_id,
            selection_token=request.selection_token,
        )
        if resolution.not_found:
            return Deny(TenantNotFoundError(
                "Tenant not found", {"requested": resolution.requested}
            ))
        tenant = resolution.tenant

        if level == AccessLevel.PUBLIC:
            return Allow(identity=ANONYMOUS, tenant=tenant)

        # 2. Identity
        identity = self.identity_provider.verify_session(request.credentials)
        if requires_identity(level) and identity.is_anonymous:
            return self.sign_in_redirect(request)

        if not requires_membership(level):
            return Allow(identity=identity, tenant=tenant)

        # 3. Membership
        if tenant is None:
            return self.onboarding_redirect()

        role = self.memberships.role_of(identity, tenant.id)
        if role is None:
            logger.warning("Non-member denied", extra={
                "identity_id": identity.id,
                "tenant_id": tenant.id,
                "path": request.path,
            })
            return Deny(UnauthorizedError("Not a member of this tenant"))

        # 4. Role
        if level == AccessLevel.ADMIN_OR_OWNER and not is_elevated_role(role):
            logger.warning("Insufficient role", extra={
                "identity_id": identity.id,
                "tenant_id": tenant.id,
                "role": role.value,
            })
            return Deny(UnauthorizedError("Admin or owner role required"))

        # 5. Subscription
        if level == AccessLevel.SUBSCRIPTION_ACTIVE:
            subscription = self.subscriptions.get_for_tenant(tenant.id)
            decision = evaluate(subscription, self.clock())
            if not decision.entitled:
                return self.pricing_redirect(decision.reason.value)

        return Allow(identity=identity, tenant=tenant, role=role)
