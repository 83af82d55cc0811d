"""
Canonical roles and access levels for SalonManager.

IMPORTANT: This is the single source of truth for authorization levels.
All access checks MUST reference these constants.
UI gating is UX only - server-side enforcement through the access gate
is security.

Role Hierarchy (per tenant):
- OWNER > ADMIN > STAFF

Access Levels (ascending):
- PUBLIC: anyone, tenant may or may not be resolved
- AUTHENTICATED: any signed-in identity
- MEMBER: signed-in identity with a membership in the resolved tenant
- ADMIN_OR_OWNER: member whose role is admin or owner
- SUBSCRIPTION_ACTIVE: member of a tenant whose subscription is entitled
"""

from enum import Enum
from typing import FrozenSet


class MemberRole(str, Enum):
    """Role of an identity inside one tenant."""
    OWNER = "owner"
    ADMIN = "admin"
    STAFF = "staff"


class AccessLevel(str, Enum):
    """Authorization level a route requires."""
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    MEMBER = "member"
    ADMIN_OR_OWNER = "admin_or_owner"
    SUBSCRIPTION_ACTIVE = "subscription_active"


# Roles allowed past ADMIN_OR_OWNER
ELEVATED_ROLES: FrozenSet[MemberRole] = frozenset({MemberRole.OWNER, MemberRole.ADMIN})

# Levels that require a membership in the resolved tenant
MEMBERSHIP_LEVELS: FrozenSet[AccessLevel] = frozenset({
    AccessLevel.MEMBER,
    AccessLevel.ADMIN_OR_OWNER,
    AccessLevel.SUBSCRIPTION_ACTIVE,
})


def requires_identity(level: AccessLevel) -> bool:
    """Every level above PUBLIC needs a signed-in identity."""
    return level != AccessLevel.PUBLIC


def requires_membership(level: AccessLevel) -> bool:
    return level in MEMBERSHIP_LEVELS


def is_elevated_role(role: MemberRole) -> bool:
    """Check if role may manage tenant settings and billing."""
    return role in ELEVATED_ROLES
