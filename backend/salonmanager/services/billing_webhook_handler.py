"""
Billing event reconciler with idempotency and ordering support.

Applies Stripe webhook events to local subscription state with:
- Signature verification before anything is read or written
- Event deduplication using the provider event ID
- Out-of-order protection through a per-subscription sequence marker
- Atomic create-if-absent of the tenant's subscription row
- Append-only audit of every applied change

The reconciler never raises past apply(); every delivery ends in a
ReconcileResult whose http_status tells the provider whether to retry.
"""

import enum
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salonmanager.config.settings import get_settings
from salonmanager.models.billing_event import BillingEventType
from salonmanager.models.subscription import Subscription, SubscriptionStatus
from salonmanager.models.tenant import Tenant
from salonmanager.platform.errors import SignatureInvalidError
from salonmanager.repositories.subscription_repository import (
    SubscriptionRepository,
    ProcessedEventRepository,
    BillingAuditRepository,
)
from salonmanager.services.subscription_state import (
    BillingEventKind,
    classify_event,
    current_state,
    map_provider_status,
    next_state,
)

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    """How a delivered billing event was handled."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    SIGNATURE_INVALID = "signature_invalid"
    MALFORMED = "malformed"
    ERROR = "error"


# Provider retries on anything outside 2xx
OUTCOME_HTTP_STATUS = {
    ReconcileOutcome.APPLIED: 200,
    ReconcileOutcome.DUPLICATE: 200,
    ReconcileOutcome.STALE: 200,
    ReconcileOutcome.IGNORED: 200,
    ReconcileOutcome.SIGNATURE_INVALID: 401,
    ReconcileOutcome.MALFORMED: 400,
    ReconcileOutcome.ERROR: 500,
}


class MalformedEventError(ValueError):
    """Authentic payload that cannot be parsed into an event."""


@dataclass
class ReconcileResult:
    """Result of applying one billing event."""
    outcome: ReconcileOutcome
    message: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    tenant_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None

    @property
    def http_status(self) -> int:
        return OUTCOME_HTTP_STATUS[self.outcome]

    @property
    def accepted(self) -> bool:
        return self.http_status < 300


@dataclass
class BillingEventEnvelope:
    """Parsed provider event."""
    event_id: str
    event_type: str
    kind: BillingEventKind
    sequence: int
    data: Dict[str, Any]
    tenant_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    external_customer_id: Optional[str] = None

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromtimestamp(self.sequence, tz=timezone.utc)


def _epoch_to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(obj: Dict[str, Any]) -> Dict[str, Any]:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _extract_tenant_id(kind: BillingEventKind, obj: Dict[str, Any]) -> Optional[str]:
    """Find the tenant reference embedded in the event object."""
    metadata = obj.get("metadata") or {}

    if kind == BillingEventKind.CHECKOUT_COMPLETED:
        return obj.get("client_reference_id") or metadata.get("tenant_id")

    if kind in (BillingEventKind.SUBSCRIPTION_SNAPSHOT, BillingEventKind.SUBSCRIPTION_DELETED):
        return metadata.get("tenant_id")

    if kind in (BillingEventKind.PAYMENT_SUCCEEDED, BillingEventKind.PAYMENT_FAILED):
        details = obj.get("subscription_details") or (
            (obj.get("parent") or {}).get("subscription_details") or {}
        )
        return (details.get("metadata") or {}).get("tenant_id")

    return None


def _extract_subscription_id(kind: BillingEventKind, obj: Dict[str, Any]) -> Optional[str]:
    if kind in (BillingEventKind.SUBSCRIPTION_SNAPSHOT, BillingEventKind.SUBSCRIPTION_DELETED):
        return obj.get("id")

    subscription = obj.get("subscription")
    if subscription is None and kind in (
        BillingEventKind.PAYMENT_SUCCEEDED, BillingEventKind.PAYMENT_FAILED
    ):
        details = (obj.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def _extract_customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer


def parse_event(raw_payload: bytes) -> BillingEventEnvelope:
    """
    Parse a verified webhook body into an event envelope.

    Raises:
        MalformedEventError: If required fields are missing or mistyped
    """
    try:
        event = json.loads(raw_payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedEventError(f"Payload is not valid JSON: {e}")

    if not isinstance(event, dict):
        raise MalformedEventError("Payload is not a JSON object")

    event_id = event.get("id")
    event_type = event.get("type")
    created = event.get("created")
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None

    if not isinstance(event_id, str) or not event_id:
        raise MalformedEventError("Event id missing")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("Event type missing")
    if isinstance(created, bool) or not isinstance(created, int):
        raise MalformedEventError("Event created timestamp missing")
    if not isinstance(obj, dict):
        raise MalformedEventError("Event data.object missing")

    kind = classify_event(event_type)
    return BillingEventEnvelope(
        event_id=event_id,
        event_type=event_type,
        kind=kind,
        sequence=created,
        data=obj,
        tenant_id=_extract_tenant_id(kind, obj),
        external_subscription_id=_extract_subscription_id(kind, obj),
        external_customer_id=_extract_customer_id(obj),
    )


class BillingEventReconciler:
    """
    Applies Stripe billing events to subscriptions.

    Each delivery is handled in one transaction: the subscription change,
    the audit row and the processed-event row commit together, so a
    failure leaves no partial state and the provider's retry starts over.
    """

    def __init__(
        self,
        db_session: Session,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
    ):
        """
        Initialize reconciler.

        Args:
            db_session: Database session
            webhook_secret: Signing secret (defaults to STRIPE_WEBHOOK_SECRET)
            tolerance_seconds: Allowed signature timestamp age
        """
        settings = get_settings()
        self.db = db_session
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None
            else settings.webhook_tolerance_seconds
        )
        self.subscriptions = SubscriptionRepository(db_session)
        self.processed = ProcessedEventRepository(db_session)
        self.audit = BillingAuditRepository(db_session)

    def verify_signature(self, raw_payload: bytes, signature_header: Optional[str]) -> None:
        """
        Verify the Stripe-Signature header against the webhook secret.

        Raises:
            SignatureInvalidError: If the header is missing, stale or wrong
        """
        if not signature_header:
            raise SignatureInvalidError("Missing signature header")

        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalidError("Payload is not UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature_header,
                self.webhook_secret,
                tolerance=self.tolerance_seconds,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Signature verification failed: {e}")

    def apply(self, raw_payload: bytes, signature_header: Optional[str]) -> ReconcileResult:
        """
        Verify, parse and apply one billing event.

        Args:
            raw_payload: Raw request body bytes
            signature_header: Stripe-Signature header value

        Returns:
            ReconcileResult
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            return ReconcileResult(
                outcome=ReconcileOutcome.ERROR,
                message="Webhook verification not configured",
            )

        try:
            self.verify_signature(raw_payload, signature_header)
        except SignatureInvalidError as e:
            logger.warning("Rejected billing event with invalid signature", extra={
                "error": e.message,
            })
            return ReconcileResult(outcome=ReconcileOutcome.SIGNATURE_INVALID, message=e.message)

        try:
            event = parse_event(raw_payload)
        except MalformedEventError as e:
            logger.warning("Rejected malformed billing event", extra={"error": str(e)})
            return ReconcileResult(outcome=ReconcileOutcome.MALFORMED, message=str(e))

        try:
            result = self._apply_event(event, raw_payload)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if not self.processed.is_processed(event.event_id):
                logger.error("Integrity error applying billing event", extra={
                    "event_id": event.event_id,
                    "event_type": event.event_type,
                    "error": str(e),
                })
                return ReconcileResult(
                    outcome=ReconcileOutcome.ERROR,
                    message="Processing error: integrity conflict",
                    event_id=event.event_id,
                    event_type=event.event_type,
                )
            # Lost a race against a concurrent delivery of the same event
            logger.info("Concurrent duplicate billing event", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
            })
            return ReconcileResult(
                outcome=ReconcileOutcome.DUPLICATE,
                message="Event already processed",
                event_id=event.event_id,
                event_type=event.event_type,
            )
        except Exception as e:
            self.db.rollback()
            logger.error("Error applying billing event", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "error": str(e),
            }, exc_info=True)
            return ReconcileResult(
                outcome=ReconcileOutcome.ERROR,
                message=f"Processing error: {e}",
                event_id=event.event_id,
                event_type=event.event_type,
            )

        logger.info("Billing event reconciled", extra={
            "event_id": event.event_id,
            "event_type": event.event_type,
            "outcome": result.outcome.value,
            "tenant_id": result.tenant_id,
            "status": result.status,
        })
        return result

    def _result(
        self,
        event: BillingEventEnvelope,
        outcome: ReconcileOutcome,
        message: str,
        subscription: Optional[Subscription] = None,
        tenant_id: Optional[str] = None,
    ) -> ReconcileResult:
        return ReconcileResult(
            outcome=outcome,
            message=message,
            event_id=event.event_id,
            event_type=event.event_type,
            tenant_id=subscription.tenant_id if subscription else tenant_id,
            subscription_id=subscription.id if subscription else None,
            status=subscription.status if subscription else None,
        )

    def _finish(
        self,
        event: BillingEventEnvelope,
        raw_payload: bytes,
        outcome: ReconcileOutcome,
        message: str,
        subscription: Optional[Subscription] = None,
        tenant_id: Optional[str] = None,
    ) -> ReconcileResult:
        """Record the event as processed and build the result."""
        self.processed.mark_processed(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome.value,
            raw_payload=raw_payload,
            tenant_id=subscription.tenant_id if subscription else tenant_id,
        )
        self.db.flush()
        return self._result(event, outcome, message, subscription, tenant_id)

    def _resolve_tenant_id(self, event: BillingEventEnvelope) -> Optional[str]:
        if not event.tenant_id:
            return None
        tenant = self.db.get(Tenant, event.tenant_id)
        if tenant is None:
            logger.warning("Billing event names unknown tenant", extra={
                "event_id": event.event_id,
                "tenant_id": event.tenant_id,
            })
            return None
        return tenant.id

    def _apply_event(self, event: BillingEventEnvelope, raw_payload: bytes) -> ReconcileResult:
        if self.processed.is_processed(event.event_id):
            return self._result(event, ReconcileOutcome.DUPLICATE, "Event already processed")

        if event.kind == BillingEventKind.UNKNOWN:
            return self._finish(
                event, raw_payload, ReconcileOutcome.IGNORED, "Unhandled event type"
            )

        tenant_id = self._resolve_tenant_id(event)
        subscription = None
        if tenant_id:
            subscription = self.subscriptions.get_for_tenant(tenant_id, for_update=True)
        if subscription is None and event.external_subscription_id:
            subscription = self.subscriptions.get_by_external_id(
                event.external_subscription_id, for_update=True
            )
            if subscription is not None:
                tenant_id = subscription.tenant_id

        if tenant_id is None:
            logger.warning("Billing event matches no tenant", extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "external_subscription_id": event.external_subscription_id,
            })
            return self._finish(event, raw_payload, ReconcileOutcome.IGNORED, "No matching tenant")

        if subscription is None:
            if event.kind not in (
                BillingEventKind.CHECKOUT_COMPLETED, BillingEventKind.SUBSCRIPTION_SNAPSHOT
            ):
                return self._finish(
                    event, raw_payload, ReconcileOutcome.IGNORED,
                    "No subscription for tenant", tenant_id=tenant_id,
                )
            subscription, created = self.subscriptions.get_or_create(tenant_id)
            if created:
                self.audit.record(
                    subscription,
                    event_type=BillingEventType.SUBSCRIPTION_CREATED,
                    from_status=None,
                    to_status=subscription.status,
                    provider_event_id=event.event_id,
                    provider_event_type=event.event_type,
                    sequence=event.sequence,
                    occurred_at=event.occurred_at,
                )
            else:
                subscription = self.subscriptions.get_for_tenant(tenant_id, for_update=True)

        if event.kind == BillingEventKind.CHECKOUT_COMPLETED:
            return self._apply_checkout_completed(event, raw_payload, subscription)

        # Stripe's created has one-second resolution; a second event in the
        # same second is stale and the next later event carries the state
        if event.sequence <= (subscription.last_event_sequence or 0):
            return self._stale(event, raw_payload, subscription)

        return self._apply_status_event(event, raw_payload, subscription)

    def _stale(
        self,
        event: BillingEventEnvelope,
        raw_payload: bytes,
        subscription: Subscription,
    ) -> ReconcileResult:
        logger.info("Stale billing event skipped", extra={
            "event_id": event.event_id,
            "sequence": event.sequence,
            "stored_sequence": subscription.last_event_sequence,
            "tenant_id": subscription.tenant_id,
        })
        return self._finish(
            event, raw_payload, ReconcileOutcome.STALE,
            "Event older than last applied event", subscription,
        )

    def _apply_checkout_completed(
        self,
        event: BillingEventEnvelope,
        raw_payload: bytes,
        subscription: Subscription,
    ) -> ReconcileResult:
        """Link provider IDs to the row; status comes from subscription events."""
        changed = False
        if event.external_subscription_id and subscription.external_subscription_id is None:
            subscription.external_subscription_id = event.external_subscription_id
            changed = True
        if event.external_customer_id and subscription.external_customer_id is None:
            subscription.external_customer_id = event.external_customer_id
            changed = True

        if event.external_customer_id:
            tenant = self.db.get(Tenant, subscription.tenant_id)
            if tenant is not None and tenant.stripe_customer_id is None:
                tenant.stripe_customer_id = event.external_customer_id

        if changed:
            self.audit.record(
                subscription,
                event_type=BillingEventType.SUBSCRIPTION_LINKED,
                from_status=subscription.status,
                to_status=subscription.status,
                provider_event_id=event.event_id,
                provider_event_type=event.event_type,
                sequence=event.sequence,
                occurred_at=event.occurred_at,
            )
            return self._finish(
                event, raw_payload, ReconcileOutcome.APPLIED, "Checkout linked", subscription
            )
        return self._finish(
            event, raw_payload, ReconcileOutcome.IGNORED, "Checkout already linked", subscription
        )

    def _apply_status_event(
        self,
        event: BillingEventEnvelope,
        raw_payload: bytes,
        subscription: Subscription,
    ) -> ReconcileResult:
        current = current_state(subscription)
        audit_type = None
        restarting = False

        stored_external_id = subscription.external_subscription_id
        if (
            event.external_subscription_id
            and stored_external_id
            and event.external_subscription_id != stored_external_id
        ):
            if current == SubscriptionStatus.CANCELED and event.kind == BillingEventKind.SUBSCRIPTION_SNAPSHOT:
                restarting = True
                current = SubscriptionStatus.NONE
                audit_type = BillingEventType.SUBSCRIPTION_RESTARTED
            else:
                logger.warning("Billing event for a different subscription", extra={
                    "event_id": event.event_id,
                    "tenant_id": subscription.tenant_id,
                    "stored_external_id": stored_external_id,
                    "event_external_id": event.external_subscription_id,
                })
                return self._finish(
                    event, raw_payload, ReconcileOutcome.IGNORED,
                    "Event for a different subscription", subscription,
                )

        snapshot_status = None
        if event.kind == BillingEventKind.SUBSCRIPTION_SNAPSHOT:
            snapshot_status = map_provider_status(event.data.get("status"))
            if snapshot_status is None:
                logger.warning("Unrecognized provider subscription status", extra={
                    "event_id": event.event_id,
                    "provider_status": event.data.get("status"),
                })

        target = next_state(current, event.kind, snapshot_status)

        if (
            event.kind == BillingEventKind.PAYMENT_SUCCEEDED
            and event.data.get("amount_paid") == 0
        ):
            # Zero-amount invoices are issued when a trial starts
            target = None

        if target is None:
            return self._finish(
                event, raw_payload, ReconcileOutcome.IGNORED,
                f"No transition from {current.value} on {event.kind.value}", subscription,
            )

        if not self.subscriptions.claim_sequence(subscription, event.sequence, event.event_id):
            # A newer event committed after this row was read
            self.db.refresh(subscription)
            return self._stale(event, raw_payload, subscription)

        previous_status = subscription.status
        if restarting or stored_external_id is None:
            subscription.external_subscription_id = (
                event.external_subscription_id or stored_external_id
            )
        if event.external_customer_id:
            subscription.external_customer_id = event.external_customer_id

        if event.kind == BillingEventKind.SUBSCRIPTION_SNAPSHOT:
            self._copy_snapshot_fields(subscription, event.data)
        elif event.kind == BillingEventKind.SUBSCRIPTION_DELETED:
            subscription.cancel_at_period_end = False

        subscription.status = target.value

        if audit_type is None:
            audit_type = (
                BillingEventType.STATUS_CHANGED if previous_status != target.value
                else BillingEventType.SUBSCRIPTION_UPDATED
            )
        self.audit.record(
            subscription,
            event_type=audit_type,
            from_status=previous_status,
            to_status=target.value,
            provider_event_id=event.event_id,
            provider_event_type=event.event_type,
            sequence=event.sequence,
            occurred_at=event.occurred_at,
        )

        return self._finish(
            event, raw_payload, ReconcileOutcome.APPLIED,
            f"Subscription {previous_status} -> {target.value}", subscription,
        )

    @staticmethod
    def _copy_snapshot_fields(subscription: Subscription, obj: Dict[str, Any]) -> None:
        item = _first_item(obj)
        subscription.trial_end = _epoch_to_datetime(obj.get("trial_end"))
        period_end = obj.get("current_period_end") or item.get("current_period_end")
        if period_end is not None:
            subscription.current_period_end = _epoch_to_datetime(period_end)
        subscription.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
        price_id = (item.get("price") or {}).get("id")
        if price_id:
            subscription.price_id = price_id


def get_billing_event_reconciler(db_session: Session) -> BillingEventReconciler:
    """
    Factory function to create a BillingEventReconciler.

    Args:
        db_session: Database session

    Returns:
        BillingEventReconciler instance
    """
    return BillingEventReconciler(db_session)
