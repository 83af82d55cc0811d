"""
Business logic services.
"""

from salonmanager.services.subscription_state import (
    BillingEventKind,
    DenialReason,
    EntitlementDecision,
    evaluate,
    is_entitled,
)

__all__ = ["BillingEventKind", "DenialReason", "EntitlementDecision", "evaluate", "is_entitled"]
