"""Repository layer with tenant isolation enforcement."""

from salonmanager.repositories.subscription_repository import (
    SubscriptionRepository,
    ProcessedEventRepository,
    BillingAuditRepository,
)

__all__ = [
    "SubscriptionRepository",
    "ProcessedEventRepository",
    "BillingAuditRepository",
]
