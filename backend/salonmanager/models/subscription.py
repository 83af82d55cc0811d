"""
Subscription model for tracking tenant subscriptions.

CRITICAL: One subscription per tenant. The row is created on checkout
initiation (or by the first billing event) and is never deleted; its
status is written only by the billing event reconciler.
"""

import enum

from sqlalchemy import (
    Column, String, BigInteger, Boolean, DateTime, Enum, UniqueConstraint
)

from salonmanager.db_base import Base
from salonmanager.models.base import TimestampMixin, TenantScopedMixin, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    """
    Subscription states.

    NONE is never persisted: it is the state of a tenant with no row.
    """
    NONE = "none"                # No subscription row
    INCOMPLETE = "incomplete"    # Checkout started, not yet confirmed
    TRIALING = "trialing"        # In trial until trial_end
    ACTIVE = "active"            # Paid and current
    PAST_DUE = "past_due"        # Payment failed, awaiting recovery
    CANCELED = "canceled"        # Ended


PERSISTED_STATUSES = tuple(s.value for s in SubscriptionStatus if s != SubscriptionStatus.NONE)


class Subscription(Base, TimestampMixin, TenantScopedMixin):
    """
    Tracks the billing subscription of each tenant.

    CRITICAL DESIGN:
    - ONE subscription per tenant (unique tenant_id)
    - Status changes only through billing events, in event order
    - last_event_sequence is the ordering marker of the last applied event
    """

    __tablename__ = "subscriptions"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    status = Column(
        Enum(*PERSISTED_STATUSES, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.INCOMPLETE.value,
        index=True,
        comment="Current subscription status"
    )

    # Billing provider references
    external_subscription_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Provider subscription ID (sub_xxx)"
    )
    external_customer_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Provider customer ID (cus_xxx)"
    )
    price_id = Column(
        String(255),
        nullable=True,
        comment="Provider price ID of the current plan"
    )

    # Billing periods
    trial_end = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the trial period"
    )
    current_period_end = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the current billing period"
    )
    cancel_at_period_end = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Cancellation scheduled for the end of the current period"
    )

    # Ordering marker for out-of-order event delivery
    last_event_sequence = Column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Sequence marker (provider event created time) of last applied event"
    )
    last_event_id = Column(
        String(255),
        nullable=True,
        comment="Provider event ID of last applied event"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", name="uq_subscriptions_tenant"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"
