"""
Public storefront routes, addressed by tenant slug.

GET /{slug}/api/public/tenant-info needs no identity. An unknown slug
is a 404 from the access gate before the handler runs.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from salonmanager.api.dependencies.access import require_public
from salonmanager.platform.access_gate import Allow

router = APIRouter(tags=["storefront"])


class TenantInfoResponse(BaseModel):
    """Public tenant details shown on the storefront."""
    slug: str
    name: str


@router.get("/{slug}/api/public/tenant-info", response_model=TenantInfoResponse)
async def tenant_info(slug: str, access: Allow = Depends(require_public)):
    return TenantInfoResponse(slug=access.tenant.slug, name=access.tenant.name)
