"""
Billing service for tenant subscriptions.

Orchestrates:
- Checkout session creation (with a guard against double subscriptions)
- Customer portal sessions
- Subscription status reads for the billing page

Subscription status is NOT written here. Checkout only inserts an
incomplete row when the tenant has none; every later change arrives
through the billing event reconciler.

CRITICAL: All operations are scoped to the tenant_id resolved by the
access gate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from salonmanager.auth.identity import Identity
from salonmanager.config.billing_plans import PlanCatalog, PlanNotFoundError, get_plan_catalog
from salonmanager.config.settings import Settings, get_settings
from salonmanager.integrations.stripe.billing_client import StripeBillingClient
from salonmanager.models.subscription import Subscription, SubscriptionStatus
from salonmanager.models.tenant import Tenant
from salonmanager.repositories.subscription_repository import SubscriptionRepository
from salonmanager.services.subscription_state import as_utc, evaluate

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    """Where to send the caller to manage or start a subscription."""
    url: str
    session_type: str  # "checkout" or "portal"
    subscription_id: Optional[str] = None


@dataclass
class SubscriptionInfo:
    """Current subscription information for a tenant."""
    tenant_id: str
    status: str
    entitled: bool
    reason: Optional[str]
    trial_end: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    plan_key: Optional[str] = None
    interval: Optional[str] = None


class BillingServiceError(Exception):
    """Base exception for billing service errors."""
    pass


class TenantMissingError(BillingServiceError):
    """Tenant row not found."""
    pass


class NoBillingCustomerError(BillingServiceError):
    """Tenant has never been through checkout."""
    pass


class BillingService:
    """
    Service for Stripe billing operations of one tenant.
    """

    def __init__(
        self,
        db_session: Session,
        tenant_id: str,
        billing_client: Optional[StripeBillingClient] = None,
        plan_catalog: Optional[PlanCatalog] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize billing service.

        Args:
            db_session: Database session
            tenant_id: Tenant resolved by the access gate
            billing_client: Stripe client (created lazily when omitted)
            plan_catalog: Plan catalog (defaults to config/billing_plans.yml)
            settings: Settings (defaults to process settings)
            clock: Returns the current time
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        self.db = db_session
        self.tenant_id = tenant_id
        self._billing_client = billing_client
        self._plan_catalog = plan_catalog
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.subscriptions = SubscriptionRepository(db_session)

    @property
    def billing_client(self) -> StripeBillingClient:
        if self._billing_client is None:
            self._billing_client = StripeBillingClient()
        return self._billing_client

    @property
    def plan_catalog(self) -> PlanCatalog:
        if self._plan_catalog is None:
            self._plan_catalog = get_plan_catalog()
        return self._plan_catalog

    def _get_tenant(self) -> Tenant:
        tenant = self.db.get(Tenant, self.tenant_id)
        if tenant is None:
            raise TenantMissingError(f"Tenant {self.tenant_id} not found")
        return tenant

    def _ensure_customer(self, tenant: Tenant, identity: Identity) -> str:
        if tenant.stripe_customer_id:
            return tenant.stripe_customer_id

        customer_id = self.billing_client.create_customer(
            email=identity.email,
            name=tenant.name,
            metadata={"tenant_id": tenant.id, "user_id": identity.id},
        )
        tenant.stripe_customer_id = customer_id
        # Keep the customer even if the checkout call below fails
        self.db.commit()
        return customer_id

    def _has_live_subscription(self, subscription: Optional[Subscription]) -> bool:
        """Entitled, or linked to a provider subscription that was not canceled."""
        if subscription is None:
            return False
        if evaluate(subscription, self.clock()).entitled:
            return True
        return (
            subscription.external_subscription_id is not None
            and subscription.status != SubscriptionStatus.CANCELED.value
        )

    def create_checkout(
        self,
        identity: Identity,
        plan_key: str,
        interval: str = "monthly",
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Start a subscription checkout for the tenant.

        If the tenant is entitled, or still has a provider subscription
        that is not canceled (past_due, incomplete, lapsed trial), a portal
        session is returned instead so a second subscription is never
        started.

        Args:
            identity: Member starting checkout
            plan_key: Plan key from the catalog (e.g., "professional")
            interval: "monthly" or "yearly"
            success_url: Redirect after successful checkout
            cancel_url: Redirect after abandoned checkout

        Returns:
            CheckoutResult

        Raises:
            PlanNotFoundError: If plan/interval is not in the catalog
            TenantMissingError: If the tenant row is gone
            StripeBillingError: If a Stripe call fails
        """
        tenant = self._get_tenant()
        subscription = self.subscriptions.get_for_tenant(tenant.id)
        app_url = self.settings.app_url

        customer_id = tenant.stripe_customer_id or (
            subscription.external_customer_id if subscription else None
        )
        if customer_id and self._has_live_subscription(subscription):
            logger.info("Tenant has a live subscription, returning portal session", extra={
                "tenant_id": tenant.id,
                "status": subscription.status,
            })
            portal = self.billing_client.create_portal_session(
                customer_id=customer_id,
                return_url=success_url or f"{app_url}/dashboard/billing",
            )
            return CheckoutResult(
                url=portal.url,
                session_type="portal",
                subscription_id=subscription.id,
            )

        price = self.plan_catalog.get_price(plan_key, interval)
        customer_id = self._ensure_customer(tenant, identity)

        subscription, created = self.subscriptions.get_or_create(
            tenant.id,
            status=SubscriptionStatus.INCOMPLETE,
            external_customer_id=customer_id,
            price_id=price.price_id,
        )

        # Trials are only offered to tenants that never had a provider subscription
        offer_trial = subscription.external_subscription_id is None
        now_ms = int(self.clock().timestamp() * 1000)
        session = self.billing_client.create_checkout_session(
            customer_id=customer_id,
            price_id=price.price_id,
            tenant_id=tenant.id,
            identity_id=identity.id,
            success_url=success_url or f"{app_url}/dashboard?checkout=success",
            cancel_url=cancel_url or f"{app_url}/pricing?checkout=canceled",
            trial_days=self.plan_catalog.trial_days if offer_trial else None,
            idempotency_key=f"checkout_{tenant.id}_{price.price_id}_{now_ms}",
        )
        self.db.commit()

        logger.info("Checkout session created", extra={
            "tenant_id": tenant.id,
            "plan_key": plan_key,
            "interval": interval,
            "subscription_created": created,
            "checkout_session_id": session.id,
        })
        return CheckoutResult(url=session.url, session_type="checkout", subscription_id=subscription.id)

    def create_portal_session(self, return_url: Optional[str] = None) -> CheckoutResult:
        """
        Open the Stripe customer portal for the tenant.

        Raises:
            NoBillingCustomerError: If the tenant has no Stripe customer
            StripeBillingError: If the Stripe call fails
        """
        tenant = self._get_tenant()
        if not tenant.stripe_customer_id:
            raise NoBillingCustomerError("Tenant has no billing account yet")

        portal = self.billing_client.create_portal_session(
            customer_id=tenant.stripe_customer_id,
            return_url=return_url or f"{self.settings.app_url}/dashboard/billing",
        )
        subscription = self.subscriptions.get_for_tenant(tenant.id)
        return CheckoutResult(
            url=portal.url,
            session_type="portal",
            subscription_id=subscription.id if subscription else None,
        )

    def get_subscription_info(self) -> SubscriptionInfo:
        """Read the tenant's local subscription state; never calls Stripe."""
        subscription = self.subscriptions.get_for_tenant(self.tenant_id)
        decision = evaluate(subscription, self.clock())

        plan = None
        if subscription is not None and subscription.price_id:
            plan = self.plan_catalog.find_by_price_id(subscription.price_id)

        return SubscriptionInfo(
            tenant_id=self.tenant_id,
            status=decision.state.value,
            entitled=decision.entitled,
            reason=decision.reason.value if decision.reason else None,
            trial_end=as_utc(subscription.trial_end) if subscription else None,
            current_period_end=as_utc(subscription.current_period_end) if subscription else None,
            cancel_at_period_end=bool(subscription.cancel_at_period_end) if subscription else False,
            plan_key=plan.plan_key if plan else None,
            interval=plan.interval if plan else None,
        )


__all__ = [
    "BillingService",
    "BillingServiceError",
    "CheckoutResult",
    "NoBillingCustomerError",
    "PlanNotFoundError",
    "SubscriptionInfo",
    "TenantMissingError",
]
