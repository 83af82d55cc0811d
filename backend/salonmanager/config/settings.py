"""
Application settings read from environment variables.

All configuration is environment-driven. Settings are read once and
cached; tests call get_settings.cache_clear() after patching the
environment.

Usage:
    from salonmanager.config.settings import get_settings

    settings = get_settings()
    if settings.is_production:
        ...
"""

import os
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

# Subdomains that never name a tenant
RESERVED_SUBDOMAINS = frozenset({
    "www", "app", "api", "admin", "dashboard", "auth", "billing", "support",
    "help", "docs", "blog", "staging", "dev", "test",
})

# First path segments that never name a tenant
RESERVED_PATH_SEGMENTS = RESERVED_SUBDOMAINS | frozenset({
    "pricing", "features", "onboarding", "site", "static", "health",
})


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer setting, using default", extra={
            "setting": name,
            "default": default,
        })
        return default


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the process configuration."""

    env: str = "development"
    app_url: str = "http://localhost:8000"
    main_domain: str = "localhost"
    app_secret_key: Optional[str] = None

    # Identity provider (Clerk)
    clerk_issuer_url: Optional[str] = None
    clerk_secret_key: Optional[str] = None
    clerk_api_url: str = "https://api.clerk.com/v1"

    # Billing provider (Stripe)
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300

    # Tenant routing
    trust_tenant_header: bool = False

    # Gate redirect targets
    sign_in_path: str = "/auth/sign-in"
    onboarding_path: str = "/onboarding"
    pricing_path: str = "/pricing"

    # Tenant selection cookie
    selection_cookie_name: str = "current-tenant"
    selection_max_age_days: int = 30

    cors_origins: tuple = field(default_factory=tuple)

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def selection_max_age_seconds(self) -> int:
        return self.selection_max_age_days * 24 * 60 * 60

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        return cls(
            env=os.getenv("ENV", "development"),
            app_url=os.getenv("APP_URL", "http://localhost:8000").rstrip("/"),
            main_domain=os.getenv("MAIN_DOMAIN", "localhost"),
            app_secret_key=os.getenv("APP_SECRET_KEY"),
            clerk_issuer_url=os.getenv("CLERK_ISSUER_URL"),
            clerk_secret_key=os.getenv("CLERK_SECRET_KEY"),
            clerk_api_url=os.getenv("CLERK_API_URL", "https://api.clerk.com/v1").rstrip("/"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
            webhook_tolerance_seconds=_env_int("STRIPE_WEBHOOK_TOLERANCE", 300),
            trust_tenant_header=_env_bool("TRUST_TENANT_HEADER"),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached process settings."""
    settings = Settings.from_env()
    logger.info("Loaded settings", extra={
        "env": settings.env,
        "main_domain": settings.main_domain,
        "trust_tenant_header": settings.trust_tenant_header,
    })
    return settings
