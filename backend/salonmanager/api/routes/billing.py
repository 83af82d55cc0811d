"""
Billing API routes for subscription management.

Checkout and portal require an admin or owner of the resolved tenant.
The subscription status read is open to every member and is never
subscription-gated, so a lapsed tenant can still see why.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from salonmanager.api.dependencies.access import require_admin_or_owner, require_member
from salonmanager.config.billing_plans import BILLING_INTERVALS, get_plan_catalog
from salonmanager.database.session import get_db_session
from salonmanager.integrations.stripe.billing_client import StripeBillingClient, get_stripe_billing_client
from salonmanager.platform.access_gate import Allow
from salonmanager.platform.errors import TransientUpstreamError
from salonmanager.services.billing_service import (
    BillingService,
    NoBillingCustomerError,
    PlanNotFoundError,
    TenantMissingError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


# Request/Response models
class CreateCheckoutRequest(BaseModel):
    """Request to start a subscription checkout."""
    plan_key: str = Field(..., description="Plan key, e.g. 'professional'")
    interval: str = Field("monthly", description="'monthly' or 'yearly'")
    success_url: Optional[str] = Field(None, description="Redirect after checkout")
    cancel_url: Optional[str] = Field(None, description="Redirect when checkout is abandoned")


class CreatePortalRequest(BaseModel):
    """Request to open the customer portal."""
    return_url: Optional[str] = None


class SessionResponse(BaseModel):
    """Where to send the browser next."""
    url: str
    session_type: str
    subscription_id: Optional[str] = None


class SubscriptionResponse(BaseModel):
    """Current subscription information."""
    tenant_id: str
    status: str
    entitled: bool
    reason: Optional[str] = None
    trial_end: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    plan_key: Optional[str] = None
    interval: Optional[str] = None


class PlanResponse(BaseModel):
    """Plan price information."""
    plan_key: str
    display_name: str
    interval: str
    amount: int
    currency: str


class PlansListResponse(BaseModel):
    """List of available plans."""
    trial_days: int
    plans: list[PlanResponse]


def get_billing_service(
    access: Allow = Depends(require_member),
    db_session: Session = Depends(get_db_session),
) -> BillingService:
    """Billing service scoped to the gate's tenant."""
    return BillingService(db_session, access.tenant.id)


def get_billing_client() -> StripeBillingClient:
    """Stripe client, or 503 when billing is not configured."""
    try:
        return get_stripe_billing_client()
    except ValueError:
        logger.error("STRIPE_SECRET_KEY not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing not configured",
        )


def _upstream_error(e: TransientUpstreamError, tenant_id: str) -> HTTPException:
    logger.error("Billing provider error", extra={
        "tenant_id": tenant_id,
        "error": e.message,
    })
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.to_dict())


@router.get("/plans", response_model=PlansListResponse)
async def list_plans():
    """List purchasable plans (public)."""
    catalog = get_plan_catalog()
    return PlansListResponse(
        trial_days=catalog.trial_days,
        plans=[
            PlanResponse(
                plan_key=p.plan_key,
                display_name=p.display_name,
                interval=p.interval,
                amount=p.amount,
                currency=p.currency,
            )
            for p in catalog.all_prices()
        ],
    )


@router.post("/checkout", response_model=SessionResponse)
async def create_checkout(
    checkout_request: CreateCheckoutRequest,
    access: Allow = Depends(require_admin_or_owner),
    db_session: Session = Depends(get_db_session),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """
    Start a Stripe Checkout for the tenant.

    Returns a portal session instead when the tenant is already entitled.
    """
    tenant_id = access.tenant.id
    if checkout_request.interval not in BILLING_INTERVALS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"interval must be one of {list(BILLING_INTERVALS)}",
        )

    logger.info("Creating checkout", extra={
        "tenant_id": tenant_id,
        "plan_key": checkout_request.plan_key,
        "interval": checkout_request.interval,
    })

    billing_service = BillingService(db_session, tenant_id, billing_client=billing_client)
    try:
        result = billing_service.create_checkout(
            identity=access.identity,
            plan_key=checkout_request.plan_key,
            interval=checkout_request.interval,
            success_url=checkout_request.success_url,
            cancel_url=checkout_request.cancel_url,
        )
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TenantMissingError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TransientUpstreamError as e:
        db_session.rollback()
        raise _upstream_error(e, tenant_id)

    return SessionResponse(
        url=result.url,
        session_type=result.session_type,
        subscription_id=result.subscription_id,
    )


@router.post("/portal", response_model=SessionResponse)
async def create_portal(
    portal_request: CreatePortalRequest,
    access: Allow = Depends(require_admin_or_owner),
    db_session: Session = Depends(get_db_session),
    billing_client: StripeBillingClient = Depends(get_billing_client),
):
    """Open the Stripe customer portal for the tenant."""
    billing_service = BillingService(db_session, access.tenant.id, billing_client=billing_client)
    try:
        result = billing_service.create_portal_session(return_url=portal_request.return_url)
    except NoBillingCustomerError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TenantMissingError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except TransientUpstreamError as e:
        raise _upstream_error(e, access.tenant.id)

    return SessionResponse(
        url=result.url,
        session_type=result.session_type,
        subscription_id=result.subscription_id,
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(billing_service: BillingService = Depends(get_billing_service)):
    """Current subscription status and entitlement of the tenant."""
    info = billing_service.get_subscription_info()
    return SubscriptionResponse(
        tenant_id=info.tenant_id,
        status=info.status,
        entitled=info.entitled,
        reason=info.reason,
        trial_end=info.trial_end,
        current_period_end=info.current_period_end,
        cancel_at_period_end=info.cancel_at_period_end,
        plan_key=info.plan_key,
        interval=info.interval,
    )
