"""
Dashboard routes.

Each route declares its access level through a require_* dependency;
the handlers only shape the response. The dashboard is shared by all
tenants, so the tenant comes from the selection (or upstream routing),
never from the path.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from salonmanager.api.dependencies.access import (
    require_admin_or_owner,
    require_member,
    require_subscription,
)
from salonmanager.database.session import get_db_session
from salonmanager.platform.access_gate import Allow
from salonmanager.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class DashboardContext(BaseModel):
    """Who is looking at which tenant."""
    tenant_id: str
    tenant_slug: str
    tenant_name: str
    identity_id: str
    role: str


class BillingOverview(BaseModel):
    context: DashboardContext
    status: str
    entitled: bool
    reason: Optional[str] = None
    plan_key: Optional[str] = None


def _context(access: Allow) -> DashboardContext:
    return DashboardContext(
        tenant_id=access.tenant.id,
        tenant_slug=access.tenant.slug,
        tenant_name=access.tenant.name,
        identity_id=access.identity.id,
        role=access.role.value,
    )


@router.get("", response_model=DashboardContext)
async def dashboard_home(access: Allow = Depends(require_member)):
    return _context(access)


@router.get("/settings", response_model=DashboardContext)
async def dashboard_settings(access: Allow = Depends(require_admin_or_owner)):
    """Tenant settings; owners and admins only."""
    return _context(access)


@router.get("/calendar", response_model=DashboardContext)
async def dashboard_calendar(access: Allow = Depends(require_subscription)):
    """Appointment calendar; needs an entitled subscription."""
    return _context(access)


@router.get("/billing", response_model=BillingOverview)
async def dashboard_billing(
    access: Allow = Depends(require_member),
    db_session: Session = Depends(get_db_session),
):
    """
    Billing overview.

    Only membership is required here. A tenant whose trial ran out must
    still reach this page to subscribe.
    """
    info = BillingService(db_session, access.tenant.id).get_subscription_info()
    return BillingOverview(
        context=_context(access),
        status=info.status,
        entitled=info.entitled,
        reason=info.reason,
        plan_key=info.plan_key,
    )
