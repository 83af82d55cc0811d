"""
Authentication module for Clerk-based authentication.

This module provides:
- JWT verification using Clerk's JWKS
- The identity provider adapter used by the access gate

SECURITY NOTES:
- Clerk is the ONLY authentication authority
- All session JWTs must be verified against Clerk's JWKS
"""

from salonmanager.auth.clerk_verifier import ClerkJWTVerifier, ClerkVerificationError
from salonmanager.auth.identity import (
    ANONYMOUS,
    ClerkIdentityProvider,
    Identity,
    IdentityProvider,
    SessionCredentials,
    get_identity_provider,
)

__all__ = [
    "ClerkJWTVerifier",
    "ClerkVerificationError",
    "ANONYMOUS",
    "ClerkIdentityProvider",
    "Identity",
    "IdentityProvider",
    "SessionCredentials",
    "get_identity_provider",
]
