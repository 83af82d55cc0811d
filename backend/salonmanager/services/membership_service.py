"""
Membership and role resolution.

This service handles:
- Resolving an identity's role within a tenant (role_of)
- Listing the tenants an identity belongs to
- Adding, re-roling and removing members

role_of() returns None both for anonymous callers and for identities
without a membership. Only the log line tells the two apart.

SECURITY:
- A tenant always keeps at least one owner
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from salonmanager.auth.identity import Identity
from salonmanager.constants.permissions import MemberRole
from salonmanager.models.tenant import Tenant, TenantStatus
from salonmanager.models.tenant_member import TenantMember

logger = logging.getLogger(__name__)


class MembershipServiceError(Exception):
    """Base exception for membership service errors."""
    pass


class MemberNotFoundError(MembershipServiceError):
    """Raised when the identity is not a member of the tenant."""
    pass


class DuplicateMemberError(MembershipServiceError):
    """Raised when the identity is already a member of the tenant."""
    pass


class LastOwnerError(MembershipServiceError):
    """Raised when a change would leave a tenant without an owner."""
    pass


@dataclass(frozen=True)
class MembershipSummary:
    """A tenant the identity belongs to, with its role there."""
    tenant_id: str
    tenant_slug: str
    tenant_name: str
    role: MemberRole


class MembershipService:
    """Reads and manages tenant memberships."""

    def __init__(self, session: Session):
        """
        Initialize service with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def _get_membership(self, identity_id: str, tenant_id: str) -> Optional[TenantMember]:
        return self.session.query(TenantMember).filter(
            TenantMember.identity_id == identity_id,
            TenantMember.tenant_id == tenant_id,
        ).first()

    def role_of(self, identity: Identity, tenant_id: str) -> Optional[MemberRole]:
        """
        Resolve the identity's role in a tenant.

        Args:
            identity: Caller identity (may be anonymous)
            tenant_id: Resolved tenant ID

        Returns:
            MemberRole, or None for anonymous callers and non-members
        """
        if identity.is_anonymous:
            logger.debug("Role lookup for anonymous caller", extra={"tenant_id": tenant_id})
            return None

        membership = self._get_membership(identity.id, tenant_id)
        if membership is None:
            logger.info("Identity has no membership in tenant", extra={
                "identity_id": identity.id,
                "tenant_id": tenant_id,
            })
            return None
        return MemberRole(membership.role)

    def list_memberships(self, identity: Identity) -> List[MembershipSummary]:
        """List the active tenants an identity belongs to, oldest first."""
        if identity.is_anonymous:
            return []

        rows = self.session.query(TenantMember, Tenant).join(
            Tenant, Tenant.id == TenantMember.tenant_id
        ).filter(
            TenantMember.identity_id == identity.id,
            Tenant.status == TenantStatus.ACTIVE,
        ).order_by(TenantMember.created_at.asc()).all()

        return [
            MembershipSummary(
                tenant_id=tenant.id,
                tenant_slug=tenant.slug,
                tenant_name=tenant.name,
                role=MemberRole(member.role),
            )
            for member, tenant in rows
        ]

    def add_member(
        self,
        tenant_id: str,
        identity_id: str,
        role: MemberRole = MemberRole.STAFF,
        invited_by: Optional[str] = None,
    ) -> TenantMember:
        """
        Add an identity to a tenant (invite acceptance).

        Raises:
            DuplicateMemberError: If the identity is already a member
        """
        if self._get_membership(identity_id, tenant_id) is not None:
            raise DuplicateMemberError("Identity is already a member of this tenant")

        member = TenantMember.create_from_invite(
            identity_id=identity_id,
            tenant_id=tenant_id,
            role=role,
            invited_by=invited_by,
        )
        try:
            with self.session.begin_nested():
                self.session.add(member)
                self.session.flush()
        except IntegrityError:
            raise DuplicateMemberError("Identity is already a member of this tenant")

        logger.info("Member added", extra={
            "tenant_id": tenant_id,
            "identity_id": identity_id,
            "role": role.value,
            "invited_by": invited_by,
        })
        return member

    def _owner_count(self, tenant_id: str) -> int:
        return self.session.query(TenantMember).filter(
            TenantMember.tenant_id == tenant_id,
            TenantMember.role == MemberRole.OWNER,
        ).count()

    def change_role(self, tenant_id: str, identity_id: str, role: MemberRole) -> TenantMember:
        """
        Change a member's role.

        Raises:
            MemberNotFoundError: If the identity is not a member
            LastOwnerError: If the last owner would be demoted
        """
        member = self._get_membership(identity_id, tenant_id)
        if member is None:
            raise MemberNotFoundError("Member not found")

        if (
            member.role == MemberRole.OWNER
            and role != MemberRole.OWNER
            and self._owner_count(tenant_id) <= 1
        ):
            raise LastOwnerError("Cannot demote the last owner of a tenant")

        previous = member.role
        member.role = role
        self.session.flush()

        logger.info("Member role changed", extra={
            "tenant_id": tenant_id,
            "identity_id": identity_id,
            "from_role": MemberRole(previous).value,
            "to_role": role.value,
        })
        return member

    def remove_member(self, tenant_id: str, identity_id: str) -> None:
        """
        Remove a member from a tenant.

        Raises:
            MemberNotFoundError: If the identity is not a member
            LastOwnerError: If the member is the last owner
        """
        member = self._get_membership(identity_id, tenant_id)
        if member is None:
            raise MemberNotFoundError("Member not found")

        if member.role == MemberRole.OWNER and self._owner_count(tenant_id) <= 1:
            raise LastOwnerError("Cannot remove the last owner of a tenant")

        self.session.delete(member)
        self.session.flush()

        logger.info("Member removed", extra={
            "tenant_id": tenant_id,
            "identity_id": identity_id,
        })
