"""
Database models for tenants, memberships and subscriptions.

Importing this package registers every table on Base.metadata.
"""

from salonmanager.models.base import TimestampMixin, TenantScopedMixin
from salonmanager.models.tenant import Tenant, TenantStatus
from salonmanager.models.tenant_member import TenantMember
from salonmanager.models.subscription import Subscription, SubscriptionStatus
from salonmanager.models.webhook_event import ProcessedBillingEvent
from salonmanager.models.billing_event import BillingEvent, BillingEventType, ActorType

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "Tenant",
    "TenantStatus",
    "TenantMember",
    "Subscription",
    "SubscriptionStatus",
    "ProcessedBillingEvent",
    "BillingEvent",
    "BillingEventType",
    "ActorType",
]
