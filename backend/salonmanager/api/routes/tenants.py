"""
Tenant onboarding and selection routes.

- POST /api/tenants: create a tenant; the caller becomes its owner and
  the new tenant is selected
- GET /api/tenants/mine: tenants the caller belongs to
- POST /api/tenants/select: select a tenant the caller is a member of
- GET /api/tenants/slug-available: onboarding slug check

The selection cookie is a convenience default only. Selecting a tenant
requires a membership, and every later request is re-checked by the
access gate anyway.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from salonmanager.api.dependencies.access import get_selection_codec, require_authenticated
from salonmanager.database.session import get_db_session
from salonmanager.platform.access_gate import Allow
from salonmanager.platform.tenant_selection import TenantSelectionCodec
from salonmanager.services.membership_service import MembershipService
from salonmanager.services.tenant_service import (
    InvalidSlugError,
    SlugTakenError,
    TenantService,
    normalize_slug,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


class CreateTenantRequest(BaseModel):
    """Onboarding form."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=63)


class SelectTenantRequest(BaseModel):
    tenant_id: str


class TenantResponse(BaseModel):
    id: str
    name: str
    slug: str
    role: Optional[str] = None


class TenantListResponse(BaseModel):
    tenants: list[TenantResponse]


class SlugAvailabilityResponse(BaseModel):
    slug: str
    available: bool


def _json_with_selection(
    content: dict,
    codec: Optional[TenantSelectionCodec],
    tenant_id: str,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=content)
    if codec is not None:
        codec.set_cookie(response, codec.encode(tenant_id))
    return response


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    body: CreateTenantRequest,
    access: Allow = Depends(require_authenticated),
    db_session: Session = Depends(get_db_session),
    codec: Optional[TenantSelectionCodec] = Depends(get_selection_codec),
):
    """Create a tenant owned by the caller and select it."""
    service = TenantService(db_session)
    try:
        tenant = service.create_tenant(body.name, body.slug, access.identity)
        db_session.commit()
    except InvalidSlugError as e:
        db_session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SlugTakenError as e:
        db_session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        db_session.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    content = TenantResponse(id=tenant.id, name=tenant.name, slug=tenant.slug, role="owner")
    return _json_with_selection(content.model_dump(), codec, tenant.id, status.HTTP_201_CREATED)


@router.get("/mine", response_model=TenantListResponse)
async def list_my_tenants(
    access: Allow = Depends(require_authenticated),
    db_session: Session = Depends(get_db_session),
):
    """List the tenants the caller belongs to."""
    memberships = MembershipService(db_session).list_memberships(access.identity)
    return TenantListResponse(tenants=[
        TenantResponse(id=m.tenant_id, name=m.tenant_name, slug=m.tenant_slug, role=m.role.value)
        for m in memberships
    ])


@router.post("/select", response_model=TenantResponse)
async def select_tenant(
    body: SelectTenantRequest,
    access: Allow = Depends(require_authenticated),
    db_session: Session = Depends(get_db_session),
    codec: Optional[TenantSelectionCodec] = Depends(get_selection_codec),
):
    """Select a tenant the caller is a member of."""
    if codec is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tenant selection not configured",
        )

    memberships = MembershipService(db_session).list_memberships(access.identity)
    match = next((m for m in memberships if m.tenant_id == body.tenant_id), None)
    if match is None:
        logger.warning("Selection of non-member tenant refused", extra={
            "identity_id": access.identity.id,
            "tenant_id": body.tenant_id,
        })
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a member of this tenant")

    content = TenantResponse(
        id=match.tenant_id, name=match.tenant_name, slug=match.tenant_slug, role=match.role.value
    )
    return _json_with_selection(content.model_dump(), codec, match.tenant_id)


@router.get("/slug-available", response_model=SlugAvailabilityResponse)
async def slug_available(
    slug: str = Query(..., min_length=1, max_length=63),
    access: Allow = Depends(require_authenticated),
    db_session: Session = Depends(get_db_session),
):
    normalized = normalize_slug(slug)
    return SlugAvailabilityResponse(
        slug=normalized,
        available=TenantService(db_session).is_slug_available(normalized),
    )
