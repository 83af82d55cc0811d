"""
Tenant model for the multi-tenant salon platform.

A Tenant is one salon account. Tenant.id is the tenant_id referenced by
every tenant-scoped model; Tenant.slug is the public handle used in
storefront URLs and subdomains.

Slugs are stored lower-case and looked up case-insensitively. Once a
tenant is published its slug never changes.
"""

import enum
from typing import Optional

from sqlalchemy import Column, String, Enum, Index
from sqlalchemy.orm import relationship

from salonmanager.db_base import Base
from salonmanager.models.base import TimestampMixin, generate_uuid


class TenantStatus(str, enum.Enum):
    """Tenant lifecycle status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base, TimestampMixin):
    """
    Tenant represents a single salon business.

    Key concepts:
    - Tenant.id IS the tenant_id used across all tenant-scoped models
    - A Tenant has many members (TenantMember) with a role each
    - A Tenant has at most one Subscription
    - stripe_customer_id links the tenant to its billing customer
    """

    __tablename__ = "tenants"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key - this IS the tenant_id used across all models"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Display name of the salon"
    )

    slug = Column(
        String(63),
        nullable=False,
        unique=True,
        index=True,
        comment="Lower-case URL handle (e.g., 'luna-hair')"
    )

    status = Column(
        Enum(TenantStatus, name="tenant_status", create_constraint=True),
        nullable=False,
        default=TenantStatus.ACTIVE,
        index=True,
        comment="Tenant lifecycle status"
    )

    stripe_customer_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Billing provider customer ID"
    )

    members = relationship(
        "TenantMember",
        back_populates="tenant",
        lazy="dynamic",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_tenants_status_slug", "status", "slug"),
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug}, status={self.status})>"

    @property
    def is_active(self) -> bool:
        """Check if tenant is currently active."""
        return self.status == TenantStatus.ACTIVE

    @property
    def has_billing_customer(self) -> bool:
        return self.stripe_customer_id is not None

    @staticmethod
    def normalize_slug(slug: Optional[str]) -> Optional[str]:
        """Case-fold a slug for storage and lookup."""
        if slug is None:
            return None
        return slug.strip().casefold()
