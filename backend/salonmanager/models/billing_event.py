"""
BillingEvent model for the immutable subscription audit trail.

CRITICAL: This table is APPEND-ONLY. Never update or delete billing
events - only insert new ones. One row is written for every applied
subscription change.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, BigInteger, DateTime, ForeignKey, Index

from salonmanager.db_base import Base
from salonmanager.models.base import TenantScopedMixin, generate_uuid


class BillingEventType:
    """Billing event type constants."""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_LINKED = "subscription_linked"
    STATUS_CHANGED = "status_changed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_RESTARTED = "subscription_restarted"


class ActorType:
    """Actor type constants."""
    USER = "user"
    SYSTEM = "system"
    WEBHOOK = "webhook"


class BillingEvent(Base, TenantScopedMixin):
    """
    Immutable audit log of subscription changes.

    NOTE: Does not use TimestampMixin - occurred_at is the provider's
    event time and created_at is the insertion time.
    """

    __tablename__ = "billing_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    subscription_id = Column(
        String(36),
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Related subscription"
    )

    event_type = Column(
        String(64),
        nullable=False,
        index=True,
        comment="Type of billing event (BillingEventType)"
    )

    actor_type = Column(
        String(32),
        nullable=False,
        default=ActorType.WEBHOOK,
        comment="Who caused the change (ActorType)"
    )

    from_status = Column(
        String(32),
        nullable=True,
        comment="Status before the change (null when the row was created)"
    )
    to_status = Column(
        String(32),
        nullable=False,
        comment="Status after the change"
    )

    provider_event_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Provider event ID that caused the change"
    )
    provider_event_type = Column(
        String(255),
        nullable=True,
        comment="Provider event type"
    )
    sequence = Column(
        BigInteger,
        nullable=True,
        comment="Provider event sequence marker"
    )

    occurred_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="When the event occurred at the provider"
    )
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="When the record was created"
    )

    __table_args__ = (
        Index("ix_billing_events_tenant_occurred", "tenant_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<BillingEvent(id={self.id}, tenant_id={self.tenant_id}, "
            f"{self.from_status}->{self.to_status})>"
        )
