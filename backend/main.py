"""
FastAPI application entry point for SalonManager.

Every protected route declares its access level through a require_*
dependency; TenantRoutingMiddleware only attaches the tenant slug taken
from the host or path.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from salonmanager.api.routes import auth
from salonmanager.api.routes import billing
from salonmanager.api.routes import dashboard
from salonmanager.api.routes import health
from salonmanager.api.routes import storefront
from salonmanager.api.routes import tenants
from salonmanager.api.routes import webhooks_stripe
from salonmanager.config.settings import get_settings
from salonmanager.platform.tenant_routing import TenantRoutingMiddleware

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info("Starting SalonManager API", extra={"env": settings.env})

    missing = [
        name for name, value in (
            ("DATABASE_URL", os.getenv("DATABASE_URL")),
            ("APP_SECRET_KEY", settings.app_secret_key),
            ("CLERK_ISSUER_URL", settings.clerk_issuer_url),
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
        )
        if not value
    ]
    if missing:
        logger.warning(
            f"Configuration incomplete (missing: {missing}). "
            "Affected endpoints will return 503."
        )

    yield

    logger.info("Shutting down SalonManager API")


app = FastAPI(
    title="SalonManager API",
    description="Multi-tenant salon management with tenant access control and subscription billing",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(TenantRoutingMiddleware)

# Health (no authentication)
app.include_router(health.router)

# Stripe webhooks (signature verification, not sessions)
app.include_router(webhooks_stripe.router)

app.include_router(auth.router)
app.include_router(tenants.router)
app.include_router(billing.router)
app.include_router(dashboard.router)

# Registered last: /{slug}/... must not shadow fixed paths
app.include_router(storefront.router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with proper logging."""
    logger.error(
        "Unhandled exception",
        extra={
            "tenant_slug": getattr(request.state, "tenant_slug", None),
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
