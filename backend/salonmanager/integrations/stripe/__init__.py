"""Stripe billing integration."""

from salonmanager.integrations.stripe.billing_client import (
    StripeBillingClient,
    StripeBillingError,
    get_stripe_billing_client,
)

__all__ = ["StripeBillingClient", "StripeBillingError", "get_stripe_billing_client"]
