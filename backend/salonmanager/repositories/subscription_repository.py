"""
Subscription repository for data access operations.

Encapsulates all database operations for subscriptions and the
processed-event record with:
- Tenant isolation enforcement
- Atomic create-if-absent for the one-row-per-tenant invariant
- Idempotency lookups by provider event ID
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salonmanager.models.subscription import Subscription, SubscriptionStatus
from salonmanager.models.webhook_event import ProcessedBillingEvent
from salonmanager.models.billing_event import BillingEvent, ActorType

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """
    Repository for subscription data access.

    All tenant-facing methods take tenant_id explicitly.
    """

    def __init__(self, db_session: Session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session

    def _query(self, for_update: bool):
        query = self.db.query(Subscription)
        if for_update:
            # Row lock held until commit; re-read so a cached row is not trusted
            query = query.with_for_update().populate_existing()
        return query

    def get_for_tenant(self, tenant_id: str, for_update: bool = False) -> Optional[Subscription]:
        """
        Get the subscription of a tenant.

        Args:
            tenant_id: Tenant ID
            for_update: Lock the row for the rest of the transaction

        Returns:
            Subscription if the tenant has one, None otherwise
        """
        return self._query(for_update).filter(
            Subscription.tenant_id == tenant_id
        ).first()

    def get_by_external_id(
        self, external_subscription_id: str, for_update: bool = False
    ) -> Optional[Subscription]:
        """Get subscription by billing provider subscription ID."""
        if not external_subscription_id:
            return None
        return self._query(for_update).filter(
            Subscription.external_subscription_id == external_subscription_id
        ).first()

    def claim_sequence(self, subscription: Subscription, sequence: int, event_id: str) -> bool:
        """
        Advance the row's event marker only if sequence is strictly newer.

        The check and the write are one UPDATE, so two writers that both
        read an older marker cannot both succeed.

        Returns:
            True if the marker was advanced, False if a newer or equal
            event was applied first
        """
        result = self.db.execute(
            update(Subscription)
            .where(
                Subscription.id == subscription.id,
                or_(
                    Subscription.last_event_sequence.is_(None),
                    Subscription.last_event_sequence < sequence,
                ),
            )
            .values(last_event_sequence=sequence, last_event_id=event_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        subscription.last_event_sequence = sequence
        subscription.last_event_id = event_id
        return True

    def get_or_create(
        self,
        tenant_id: str,
        status: SubscriptionStatus = SubscriptionStatus.INCOMPLETE,
        **fields,
    ) -> Tuple[Subscription, bool]:
        """
        Atomic insert-if-absent, else fetch.

        The insert runs in a SAVEPOINT so a unique-constraint loss against
        a concurrent writer rolls back only the insert; the loser re-reads
        the winner's row.

        Args:
            tenant_id: Tenant ID
            status: Initial status for a new row
            **fields: Extra column values for a new row

        Returns:
            Tuple of (subscription, created)
        """
        existing = self.get_for_tenant(tenant_id)
        if existing is not None:
            return existing, False

        subscription = Subscription(tenant_id=tenant_id, status=status.value, **fields)
        try:
            with self.db.begin_nested():
                self.db.add(subscription)
                self.db.flush()
        except IntegrityError:
            logger.info("Subscription created concurrently, re-reading", extra={
                "tenant_id": tenant_id,
            })
            existing = self.get_for_tenant(tenant_id)
            if existing is None:
                raise
            return existing, False

        logger.info("Subscription row created", extra={
            "tenant_id": tenant_id,
            "subscription_id": subscription.id,
            "status": subscription.status,
        })
        return subscription, True


class ProcessedEventRepository:
    """Repository for the applied-events record used for idempotency."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def is_processed(self, event_id: str) -> bool:
        """Check if a provider event has already been handled."""
        existing = self.db.query(ProcessedBillingEvent).filter(
            ProcessedBillingEvent.event_id == event_id
        ).first()
        return existing is not None

    def mark_processed(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        raw_payload: bytes,
        tenant_id: Optional[str] = None,
    ) -> ProcessedBillingEvent:
        """
        Add the processed-event row to the current transaction.

        The unique event_id turns a concurrent duplicate into an
        IntegrityError at flush or commit.
        """
        record = ProcessedBillingEvent(
            event_id=event_id,
            event_type=event_type,
            tenant_id=tenant_id,
            outcome=outcome,
            payload_hash=hashlib.sha256(raw_payload).hexdigest(),
            processed_at=datetime.now(timezone.utc),
        )
        self.db.add(record)
        return record


class BillingAuditRepository:
    """Append-only writer for the billing audit trail."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def record(
        self,
        subscription: Subscription,
        event_type: str,
        from_status: Optional[str],
        to_status: str,
        provider_event_id: Optional[str] = None,
        provider_event_type: Optional[str] = None,
        sequence: Optional[int] = None,
        occurred_at: Optional[datetime] = None,
        actor_type: str = ActorType.WEBHOOK,
    ) -> BillingEvent:
        event = BillingEvent(
            tenant_id=subscription.tenant_id,
            subscription_id=subscription.id,
            event_type=event_type,
            actor_type=actor_type,
            from_status=from_status,
            to_status=to_status,
            provider_event_id=provider_event_id,
            provider_event_type=provider_event_type,
            sequence=sequence,
            occurred_at=occurred_at or datetime.now(timezone.utc),
        )
        self.db.add(event)
        return event

