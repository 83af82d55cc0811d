"""
Stripe API client for checkout and customer portal sessions.

Every Stripe failure is re-raised as StripeBillingError, a
TransientUpstreamError, so callers surface it as retryable and never
treat a failed provider call as success.

Documentation: https://docs.stripe.com/api/checkout/sessions
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import stripe

from salonmanager.config.settings import get_settings
from salonmanager.platform.errors import TransientUpstreamError

logger = logging.getLogger(__name__)


class StripeBillingError(TransientUpstreamError):
    """Stripe API call failed."""

    def __init__(self, message: str, stripe_code: Optional[str] = None):
        super().__init__(message, {"stripe_code": stripe_code} if stripe_code else None)
        self.stripe_code = stripe_code


@dataclass
class HostedSession:
    """A Stripe-hosted page the caller is redirected to."""
    id: str
    url: str


class StripeBillingClient:
    """Thin wrapper over the Stripe customer, checkout and portal APIs."""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or get_settings().stripe_secret_key
        if not self.api_key:
            raise ValueError("STRIPE_SECRET_KEY environment variable is required")

    def _call(self, operation: str, fn, **params):
        try:
            return fn(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            logger.error("Stripe API error", extra={
                "operation": operation,
                "error": str(e),
                "stripe_code": getattr(e, "code", None),
            })
            raise StripeBillingError(f"Stripe {operation} failed", getattr(e, "code", None))

    def create_customer(self, email: Optional[str], name: str, metadata: Dict[str, str]) -> str:
        """Create a customer and return its id."""
        params = {"name": name, "metadata": metadata}
        if email:
            params["email"] = email
        customer = self._call("customer.create", stripe.Customer.create, **params)
        logger.info("Stripe customer created", extra={
            "customer_id": customer["id"],
            "tenant_id": metadata.get("tenant_id"),
        })
        return customer["id"]

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        tenant_id: str,
        identity_id: str,
        success_url: str,
        cancel_url: str,
        trial_days: Optional[int],
        idempotency_key: str,
    ) -> HostedSession:
        """
        Create a subscription-mode Checkout Session.

        The tenant id travels as client_reference_id and as metadata on
        both the session and the subscription, where webhook events pick
        it up again.
        """
        metadata = {"tenant_id": tenant_id, "user_id": identity_id}
        subscription_data = {"metadata": metadata}
        if trial_days:
            subscription_data["trial_period_days"] = trial_days

        session = self._call(
            "checkout.session.create",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            client_reference_id=tenant_id,
            line_items=[{"price": price_id, "quantity": 1}],
            payment_method_types=["card"],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data=subscription_data,
            allow_promotion_codes=True,
            idempotency_key=idempotency_key,
        )
        return HostedSession(id=session["id"], url=session["url"])

    def create_portal_session(self, customer_id: str, return_url: str) -> HostedSession:
        """Create a customer portal session."""
        session = self._call(
            "billing_portal.session.create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return HostedSession(id=session["id"], url=session["url"])


def get_stripe_billing_client() -> StripeBillingClient:
    """FastAPI dependency returning a Stripe client for the configured key."""
    return StripeBillingClient()
