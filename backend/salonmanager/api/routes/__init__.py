# API routes
from salonmanager.api.routes import auth
from salonmanager.api.routes import billing
from salonmanager.api.routes import dashboard
from salonmanager.api.routes import health
from salonmanager.api.routes import storefront
from salonmanager.api.routes import tenants
from salonmanager.api.routes import webhooks_stripe

__all__ = ["auth", "billing", "dashboard", "health", "storefront", "tenants", "webhooks_stripe"]
