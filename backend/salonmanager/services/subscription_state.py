"""
Subscription state machine.

States:
    none -> incomplete -> trialing -> active <-> past_due -> canceled
    trialing -> canceled, active -> canceled

Entitlement is derived, not stored:
    entitled = status == active OR (status == trialing AND now < trial_end)

so trial expiry takes effect on the next read without any scheduled job.

Billing events are classified into a small set of kinds and mapped to
the next state through TRANSITIONS. Event types the table does not know
are UNKNOWN and never change state.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Tuple

from salonmanager.models.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


class BillingEventKind(str, enum.Enum):
    """Provider event types reduced to what the state machine reacts to."""
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_SNAPSHOT = "subscription_snapshot"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    UNKNOWN = "unknown"


class DenialReason(str, enum.Enum):
    """Reason codes attached to subscription redirects."""
    NO_SUBSCRIPTION = "no_subscription"
    TRIAL_EXPIRED = "trial_expired"
    PAYMENT_ISSUE = "payment_issue"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


EVENT_KINDS: Dict[str, BillingEventKind] = {
    "checkout.session.completed": BillingEventKind.CHECKOUT_COMPLETED,
    "customer.subscription.created": BillingEventKind.SUBSCRIPTION_SNAPSHOT,
    "customer.subscription.updated": BillingEventKind.SUBSCRIPTION_SNAPSHOT,
    "customer.subscription.deleted": BillingEventKind.SUBSCRIPTION_DELETED,
    "invoice.payment_succeeded": BillingEventKind.PAYMENT_SUCCEEDED,
    "invoice.paid": BillingEventKind.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": BillingEventKind.PAYMENT_FAILED,
}

# Provider subscription statuses mapped onto local states
PROVIDER_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}

# Edges of the lifecycle graph; self-loops are period renewals and plan changes
VALID_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.NONE: frozenset({
        SubscriptionStatus.INCOMPLETE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.ACTIVE,
    }),
    SubscriptionStatus.INCOMPLETE: frozenset({
        SubscriptionStatus.INCOMPLETE,
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.TRIALING: frozenset({
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.PAST_DUE: frozenset({
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.CANCELED: frozenset({
        SubscriptionStatus.CANCELED,
    }),
}

# (current state, event kind) -> next state for kinds that imply a target.
# Snapshot events carry their own target status and are checked against
# VALID_TRANSITIONS instead.
TRANSITIONS: Dict[Tuple[SubscriptionStatus, BillingEventKind], SubscriptionStatus] = {
    (SubscriptionStatus.NONE, BillingEventKind.CHECKOUT_COMPLETED): SubscriptionStatus.INCOMPLETE,
    (SubscriptionStatus.INCOMPLETE, BillingEventKind.PAYMENT_SUCCEEDED): SubscriptionStatus.ACTIVE,
    (SubscriptionStatus.TRIALING, BillingEventKind.PAYMENT_SUCCEEDED): SubscriptionStatus.ACTIVE,
    (SubscriptionStatus.ACTIVE, BillingEventKind.PAYMENT_SUCCEEDED): SubscriptionStatus.ACTIVE,
    (SubscriptionStatus.PAST_DUE, BillingEventKind.PAYMENT_SUCCEEDED): SubscriptionStatus.ACTIVE,
    (SubscriptionStatus.TRIALING, BillingEventKind.PAYMENT_FAILED): SubscriptionStatus.PAST_DUE,
    (SubscriptionStatus.ACTIVE, BillingEventKind.PAYMENT_FAILED): SubscriptionStatus.PAST_DUE,
    (SubscriptionStatus.PAST_DUE, BillingEventKind.PAYMENT_FAILED): SubscriptionStatus.PAST_DUE,
    (SubscriptionStatus.INCOMPLETE, BillingEventKind.SUBSCRIPTION_DELETED): SubscriptionStatus.CANCELED,
    (SubscriptionStatus.TRIALING, BillingEventKind.SUBSCRIPTION_DELETED): SubscriptionStatus.CANCELED,
    (SubscriptionStatus.ACTIVE, BillingEventKind.SUBSCRIPTION_DELETED): SubscriptionStatus.CANCELED,
    (SubscriptionStatus.PAST_DUE, BillingEventKind.SUBSCRIPTION_DELETED): SubscriptionStatus.CANCELED,
}


@dataclass(frozen=True)
class EntitlementDecision:
    """Result of evaluating a subscription at a point in time."""
    entitled: bool
    state: SubscriptionStatus
    reason: Optional[DenialReason] = None


def classify_event(event_type: str) -> BillingEventKind:
    """Map a provider event type string to its kind."""
    return EVENT_KINDS.get(event_type, BillingEventKind.UNKNOWN)


def map_provider_status(provider_status: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a provider subscription status; None when unrecognized."""
    if not provider_status:
        return None
    return PROVIDER_STATUS_MAP.get(provider_status)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def current_state(subscription: Optional[Subscription]) -> SubscriptionStatus:
    if subscription is None:
        return SubscriptionStatus.NONE
    return SubscriptionStatus(subscription.status)


def is_entitled(subscription: Optional[Subscription], now: datetime) -> bool:
    """
    Derived entitlement predicate.

    A trialing subscription without trial_end is not entitled.
    """
    return evaluate(subscription, now).entitled


def evaluate(subscription: Optional[Subscription], now: datetime) -> EntitlementDecision:
    """
    Evaluate entitlement and, when denied, the reason code.

    Args:
        subscription: Tenant's subscription row, or None
        now: Evaluation time (timezone-aware)

    Returns:
        EntitlementDecision
    """
    state = current_state(subscription)
    now = as_utc(now)

    if state == SubscriptionStatus.ACTIVE:
        return EntitlementDecision(entitled=True, state=state)

    if state == SubscriptionStatus.TRIALING:
        trial_end = as_utc(subscription.trial_end)
        if trial_end is not None and now < trial_end:
            return EntitlementDecision(entitled=True, state=state)
        return EntitlementDecision(entitled=False, state=state, reason=DenialReason.TRIAL_EXPIRED)

    if state == SubscriptionStatus.NONE:
        return EntitlementDecision(entitled=False, state=state, reason=DenialReason.NO_SUBSCRIPTION)

    if state == SubscriptionStatus.CANCELED:
        return EntitlementDecision(
            entitled=False, state=state, reason=DenialReason.SUBSCRIPTION_CANCELED
        )

    # incomplete, past_due
    return EntitlementDecision(entitled=False, state=state, reason=DenialReason.PAYMENT_ISSUE)


def is_valid_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, frozenset())


def next_state(
    current: SubscriptionStatus,
    kind: BillingEventKind,
    snapshot_status: Optional[SubscriptionStatus] = None,
) -> Optional[SubscriptionStatus]:
    """
    Compute the state after applying an event.

    Args:
        current: State before the event
        kind: Classified event kind
        snapshot_status: Mapped provider status for snapshot events

    Returns:
        The next state, or None when the event does not change state
    """
    if kind == BillingEventKind.UNKNOWN:
        return None

    if kind == BillingEventKind.SUBSCRIPTION_SNAPSHOT:
        if snapshot_status is None:
            return None
        if current == SubscriptionStatus.CANCELED and snapshot_status != current:
            # A canceled lifecycle only restarts under a new external subscription
            logger.warning("Ignoring snapshot for canceled subscription", extra={
                "to_status": snapshot_status.value,
            })
            return None
        if not is_valid_transition(current, snapshot_status):
            # Provider is the source of truth; record the odd edge and follow it
            logger.warning("Unexpected subscription transition", extra={
                "from_status": current.value,
                "to_status": snapshot_status.value,
            })
        return snapshot_status

    return TRANSITIONS.get((current, kind))
