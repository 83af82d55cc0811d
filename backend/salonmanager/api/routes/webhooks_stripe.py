"""
Stripe webhook endpoint for billing events.

SECURITY: Every delivery is signature-checked by the reconciler before
anything is parsed or written.

Status codes drive Stripe's retry policy:
- 200: applied, duplicate, stale or ignored (no retry)
- 400: authentic but malformed payload
- 401: signature invalid
- 500: processing error (Stripe retries)

Documentation: https://docs.stripe.com/webhooks
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from salonmanager.database.session import get_db_session
from salonmanager.services.billing_webhook_handler import (
    BillingEventReconciler,
    get_billing_event_reconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/stripe", tags=["webhooks"])

SIGNATURE_HEADER = "Stripe-Signature"


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool
    outcome: str
    message: str
    event_id: Optional[str] = None


def get_reconciler(db_session: Session = Depends(get_db_session)) -> BillingEventReconciler:
    return get_billing_event_reconciler(db_session)


@router.post("", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    reconciler: BillingEventReconciler = Depends(get_reconciler),
):
    """
    Receive a Stripe event.

    The raw body is passed on untouched; signature verification needs
    the exact bytes Stripe signed.
    """
    body = await request.body()
    result = reconciler.apply(body, request.headers.get(SIGNATURE_HEADER))

    payload = WebhookResponse(
        received=result.accepted,
        outcome=result.outcome.value,
        message=result.message,
        event_id=result.event_id,
    )
    return JSONResponse(status_code=result.http_status, content=payload.model_dump())
