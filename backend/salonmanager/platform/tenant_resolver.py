"""
Tenant resolution for incoming requests.

Resolution order, first match wins:
1. Explicit slug (path segment or subdomain)
2. Tenant id attached by upstream routing
3. The caller's tenant selection token

SECURITY:
- A slug or upstream id that names no tenant is NOT FOUND. Resolution
  never falls back to the selection, so a mistyped URL cannot land a
  user in another tenant.
- Slugs are case-folded and matched exactly, never fuzzily.
- An invalid, expired or dangling selection counts as no selection.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from salonmanager.models.tenant import Tenant, TenantStatus
from salonmanager.platform.tenant_selection import TenantSelectionCodec

logger = logging.getLogger(__name__)


class ResolutionSource(str, enum.Enum):
    """Where the resolved tenant came from."""
    SLUG = "slug"
    UPSTREAM = "upstream"
    SELECTION = "selection"
    NONE = "none"


@dataclass(frozen=True)
class TenantRef:
    """Resolved tenant, detached from the session."""
    id: str
    slug: str
    name: str

    @classmethod
    def from_model(cls, tenant: Tenant) -> "TenantRef":
        return cls(id=tenant.id, slug=tenant.slug, name=tenant.name)


@dataclass(frozen=True)
class TenantResolution:
    """
    Outcome of tenant resolution.

    not_found is set when a tenant was explicitly named (slug or
    upstream id) and does not exist; tenant is None in that case.
    """
    tenant: Optional[TenantRef]
    source: ResolutionSource
    not_found: bool = False
    requested: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.tenant is not None


class TenantResolver:
    """Resolves the tenant a request belongs to."""

    def __init__(self, db_session: Session, selection_codec: Optional[TenantSelectionCodec] = None):
        """
        Initialize resolver.

        Args:
            db_session: Database session
            selection_codec: Codec for selection tokens (None disables selection)
        """
        self.db = db_session
        self.selection_codec = selection_codec

    def get_by_slug(self, slug: str) -> Optional[Tenant]:
        """Case-folded exact-match lookup of an active tenant."""
        normalized = Tenant.normalize_slug(slug)
        if not normalized:
            return None
        return self.db.query(Tenant).filter(
            Tenant.slug == normalized,
            Tenant.status == TenantStatus.ACTIVE,
        ).first()

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        if not tenant_id:
            return None
        return self.db.query(Tenant).filter(
            Tenant.id == tenant_id,
            Tenant.status == TenantStatus.ACTIVE,
        ).first()

    def resolve(
        self,
        slug: Optional[str] = None,
        upstream_tenant_id: Optional[str] = None,
        selection_token: Optional[str] = None,
    ) -> TenantResolution:
        """
        Resolve the tenant for a request.

        Args:
            slug: Explicit slug from the path or subdomain
            upstream_tenant_id: Tenant id attached by upstream routing
            selection_token: Raw tenant selection token

        Returns:
            TenantResolution
        """
        if slug is not None:
            tenant = self.get_by_slug(slug)
            if tenant is None:
                logger.info("Tenant slug not found", extra={"slug": slug})
                return TenantResolution(
                    tenant=None, source=ResolutionSource.SLUG, not_found=True, requested=slug
                )
            return TenantResolution(tenant=TenantRef.from_model(tenant), source=ResolutionSource.SLUG)

        if upstream_tenant_id is not None:
            tenant = self.get_by_id(upstream_tenant_id)
            if tenant is None:
                logger.warning("Upstream tenant id not found", extra={
                    "tenant_id": upstream_tenant_id,
                })
                return TenantResolution(
                    tenant=None,
                    source=ResolutionSource.UPSTREAM,
                    not_found=True,
                    requested=upstream_tenant_id,
                )
            return TenantResolution(
                tenant=TenantRef.from_model(tenant), source=ResolutionSource.UPSTREAM
            )

        if self.selection_codec is not None and selection_token:
            selected_id = self.selection_codec.decode(selection_token)
            tenant = self.get_by_id(selected_id) if selected_id else None
            if tenant is not None:
                return TenantResolution(
                    tenant=TenantRef.from_model(tenant), source=ResolutionSource.SELECTION
                )
            if selected_id:
                logger.info("Selected tenant no longer exists", extra={"tenant_id": selected_id})

        return TenantResolution(tenant=None, source=ResolutionSource.NONE)
