"""
Tenant registry for onboarding.

This service handles:
- Normalizing and validating slugs
- Creating a tenant with its creator as owner
- Looking tenants up by slug

Slug rules:
- lower-case letters, digits and hyphens, 3 to 63 characters
- no leading or trailing hyphen
- not a reserved subdomain or path segment
- unique case-insensitively (slugs are stored lower-case)
"""

import logging
import re
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from salonmanager.auth.identity import Identity
from salonmanager.config.settings import RESERVED_PATH_SEGMENTS
from salonmanager.models.tenant import Tenant, TenantStatus
from salonmanager.models.tenant_member import TenantMember

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")


class TenantServiceError(Exception):
    """Base exception for tenant service errors."""
    pass


class InvalidSlugError(TenantServiceError):
    """Raised when a slug does not satisfy the slug rules."""
    pass


class SlugTakenError(TenantServiceError):
    """Raised when another tenant already uses the slug."""
    pass


def normalize_slug(raw: str) -> str:
    """
    Turn user input into slug form.

    Lower-cases, replaces whitespace runs with a hyphen and drops every
    other character outside [a-z0-9-].
    """
    slug = (raw or "").strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-{2,}", "-", slug)


def validate_slug(slug: str) -> None:
    """
    Raises:
        InvalidSlugError: If the slug breaks a slug rule
    """
    if not SLUG_PATTERN.match(slug):
        raise InvalidSlugError(
            "Slug must be 3-63 characters of a-z, 0-9 and '-', "
            "and may not start or end with '-'"
        )
    if slug in RESERVED_PATH_SEGMENTS:
        raise InvalidSlugError(f"Slug '{slug}' is reserved")


class TenantService:
    """Creates and looks up tenants."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_slug(self, slug: str) -> Optional[Tenant]:
        normalized = Tenant.normalize_slug(slug)
        if not normalized:
            return None
        return self.session.query(Tenant).filter(Tenant.slug == normalized).first()

    def is_slug_available(self, slug: str) -> bool:
        try:
            validate_slug(slug)
        except InvalidSlugError:
            return False
        return self.get_by_slug(slug) is None

    def create_tenant(self, name: str, slug: str, owner: Identity) -> Tenant:
        """
        Create a tenant and make the creator its owner.

        Args:
            name: Display name
            slug: Requested slug (normalized before validation)
            owner: Creating identity

        Returns:
            The new Tenant (flushed, not committed)

        Raises:
            InvalidSlugError: If the slug is malformed or reserved
            SlugTakenError: If the slug is in use
            ValueError: If owner is anonymous or name is blank
        """
        if owner.is_anonymous:
            raise ValueError("Tenant creator must be signed in")
        if not name or not name.strip():
            raise ValueError("Tenant name is required")

        normalized = normalize_slug(slug)
        validate_slug(normalized)

        if self.get_by_slug(normalized) is not None:
            raise SlugTakenError(f"Slug '{normalized}' is already taken")

        tenant = Tenant(name=name.strip(), slug=normalized, status=TenantStatus.ACTIVE)
        try:
            with self.session.begin_nested():
                self.session.add(tenant)
                self.session.flush()
                self.session.add(TenantMember.create_owner(owner.id, tenant.id))
                self.session.flush()
        except IntegrityError:
            raise SlugTakenError(f"Slug '{normalized}' is already taken")

        logger.info("Tenant created", extra={
            "tenant_id": tenant.id,
            "slug": tenant.slug,
            "owner_identity_id": owner.id,
        })
        return tenant
