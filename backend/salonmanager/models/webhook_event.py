"""
ProcessedBillingEvent model for tracking handled billing provider events.

Used for idempotency - ensures each provider event is applied at most once.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index

from salonmanager.db_base import Base
from salonmanager.models.base import generate_uuid


class ProcessedBillingEvent(Base):
    """
    Tracks processed billing events for deduplication.

    The billing provider delivers events at least once. The unique
    event_id makes a second insert for the same event fail, which the
    reconciler treats as a duplicate.
    """

    __tablename__ = "processed_billing_events"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    event_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Provider event ID (evt_xxx)"
    )

    event_type = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Provider event type (e.g., customer.subscription.updated)"
    )

    tenant_id = Column(
        String(36),
        nullable=True,
        index=True,
        comment="Tenant the event was attributed to, if any"
    )

    outcome = Column(
        String(32),
        nullable=False,
        comment="applied, stale or ignored"
    )

    payload_hash = Column(
        String(64),
        nullable=True,
        comment="SHA-256 hash of payload for debugging"
    )

    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the event was processed"
    )

    __table_args__ = (
        Index("idx_processed_billing_events_tenant_type", "tenant_id", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<ProcessedBillingEvent(event_id={self.event_id}, type={self.event_type}, outcome={self.outcome})>"
