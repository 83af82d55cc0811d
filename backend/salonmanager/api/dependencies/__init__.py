"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from salonmanager.api.dependencies.access import (
    get_access_gate,
    get_selection_codec,
    require_access,
    require_public,
    require_authenticated,
    require_member,
    require_admin_or_owner,
    require_subscription,
)

__all__ = [
    "get_access_gate",
    "get_selection_codec",
    "require_access",
    "require_public",
    "require_authenticated",
    "require_member",
    "require_admin_or_owner",
    "require_subscription",
]
