"""
TenantMember model linking identities to tenants with a role.

A membership is the only source of authorization inside a tenant. Rows
are created when a tenant is created (creator becomes owner) or when an
invite is accepted, and deleted when the member is removed.

SECURITY:
- (identity_id, tenant_id) is unique: one role per identity per tenant
- CASCADE delete on tenant_id: tenant deletion removes all memberships
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, Enum, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from salonmanager.db_base import Base
from salonmanager.models.base import TimestampMixin, generate_uuid
from salonmanager.constants.permissions import MemberRole


class TenantMember(Base, TimestampMixin):
    """
    Junction table linking identity provider users to tenants.

    identity_id is the opaque subject issued by the identity provider;
    identities themselves are never stored here.
    """

    __tablename__ = "tenant_members"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        comment="Primary key (UUID)"
    )

    identity_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Identity provider subject (e.g., Clerk user_xxx)"
    )

    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Tenant the identity belongs to"
    )

    role = Column(
        Enum(MemberRole, name="member_role", create_constraint=True),
        nullable=False,
        default=MemberRole.STAFF,
        comment="Role within the tenant: owner, admin, staff"
    )

    invited_by = Column(
        String(255),
        nullable=True,
        comment="Identity that granted the membership (null for creator)"
    )

    tenant = relationship("Tenant", back_populates="members")

    __table_args__ = (
        UniqueConstraint("identity_id", "tenant_id", name="uq_tenant_member_identity"),
        Index("ix_tenant_members_tenant_role", "tenant_id", "role"),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantMember(identity_id={self.identity_id}, "
            f"tenant_id={self.tenant_id}, role={self.role})>"
        )

    @classmethod
    def create_owner(cls, identity_id: str, tenant_id: str) -> "TenantMember":
        """Membership for the identity that created the tenant."""
        return cls(
            identity_id=identity_id,
            tenant_id=tenant_id,
            role=MemberRole.OWNER,
            created_at=datetime.now(timezone.utc),
        )

    @classmethod
    def create_from_invite(
        cls,
        identity_id: str,
        tenant_id: str,
        role: MemberRole,
        invited_by: Optional[str],
    ) -> "TenantMember":
        """Membership created when an invite is accepted."""
        return cls(
            identity_id=identity_id,
            tenant_id=tenant_id,
            role=role,
            invited_by=invited_by,
            created_at=datetime.now(timezone.utc),
        )
