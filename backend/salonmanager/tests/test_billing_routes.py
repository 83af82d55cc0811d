"""
Route tests for the Stripe webhook endpoint and the billing API.
"""

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from main import app
from salonmanager.api.routes.billing import get_billing_client
from salonmanager.auth.identity import get_identity_provider
from salonmanager.constants.permissions import MemberRole
from salonmanager.database.session import get_db_session
from salonmanager.integrations.stripe.billing_client import (
    HostedSession,
    StripeBillingClient,
    StripeBillingError,
)
from salonmanager.models.subscription import Subscription, SubscriptionStatus
from salonmanager.models.webhook_event import ProcessedBillingEvent
from salonmanager.platform.tenant_selection import TenantSelectionCodec

WEBHOOK_URL = "/api/webhooks/stripe"
SECRET = "whsec_test_secret"


def signed(payload: str, secret: str = SECRET) -> dict:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def subscription_event(tenant_id: str, status: str, created: int, event_id: str) -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": "customer.subscription.updated",
        "created": created,
        "data": {"object": {
            "id": "sub_123",
            "object": "subscription",
            "customer": "cus_123",
            "status": status,
            "trial_end": None,
            "cancel_at_period_end": False,
            "metadata": {"tenant_id": tenant_id},
            "items": {"data": [{"price": {"id": "price_professional_monthly"}}]},
        }},
    })


@pytest.fixture
def billing_client():
    client = MagicMock(spec=StripeBillingClient)
    client.create_customer.return_value = "cus_new"
    client.create_checkout_session.return_value = HostedSession(
        id="cs_1", url="https://checkout.stripe.test/cs_1"
    )
    client.create_portal_session.return_value = HostedSession(
        id="bps_1", url="https://billing.stripe.test/bps_1"
    )
    return client


@pytest.fixture
def client(db_session, identity_provider, billing_client):
    def _db():
        yield db_session

    app.dependency_overrides[get_db_session] = _db
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_billing_client] = lambda: billing_client
    try:
        yield TestClient(app, follow_redirects=False)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def luna(make_tenant):
    return make_tenant(slug="luna-hair", name="Luna Hair")


def member_headers(client, identity_provider, tenant, identity_id="user_1") -> dict:
    client.cookies.set("current-tenant", TenantSelectionCodec().encode(tenant.id))
    return {"Authorization": f"Bearer {identity_provider.login(identity_id)}"}


class TestStripeWebhookRoute:

    def test_applies_signed_event(self, client, luna, db_session):
        payload = subscription_event(luna.id, "active", 1736400000, "evt_1")

        response = client.post(WEBHOOK_URL, content=payload, headers=signed(payload))

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        assert response.json()["event_id"] == "evt_1"
        subscription = db_session.query(Subscription).filter_by(tenant_id=luna.id).one()
        assert subscription.status == SubscriptionStatus.ACTIVE.value

    def test_redelivery_is_duplicate(self, client, luna, db_session):
        payload = subscription_event(luna.id, "active", 1736400000, "evt_1")
        client.post(WEBHOOK_URL, content=payload, headers=signed(payload))

        response = client.post(WEBHOOK_URL, content=payload, headers=signed(payload))

        assert response.status_code == 200
        assert response.json()["outcome"] == "duplicate"
        assert db_session.query(ProcessedBillingEvent).count() == 1

    @pytest.mark.security
    def test_bad_signature_is_401_and_writes_nothing(self, client, luna, db_session):
        payload = subscription_event(luna.id, "active", 1736400000, "evt_1")

        response = client.post(
            WEBHOOK_URL, content=payload, headers=signed(payload, secret="whsec_wrong")
        )

        assert response.status_code == 401
        assert response.json()["received"] is False
        assert db_session.query(Subscription).count() == 0
        assert db_session.query(ProcessedBillingEvent).count() == 0

    @pytest.mark.security
    def test_missing_signature_is_401(self, client):
        response = client.post(WEBHOOK_URL, content="{}")

        assert response.status_code == 401

    def test_malformed_payload_is_400(self, client):
        payload = "not json"

        response = client.post(WEBHOOK_URL, content=payload, headers=signed(payload))

        assert response.status_code == 400
        assert response.json()["outcome"] == "malformed"

    def test_unknown_event_type_is_acknowledged(self, client, db_session):
        payload = json.dumps({
            "id": "evt_x",
            "type": "customer.tax_id.created",
            "created": 1736400000,
            "data": {"object": {"id": "txi_1"}},
        })

        response = client.post(WEBHOOK_URL, content=payload, headers=signed(payload))

        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"
        assert db_session.query(Subscription).count() == 0


class TestBillingRoutes:

    def test_plans_are_public(self, client):
        response = client.get("/api/billing/plans")

        assert response.status_code == 200
        body = response.json()
        assert body["trial_days"] == 30
        assert {p["plan_key"] for p in body["plans"]} == {"starter", "professional", "premium"}

    def test_owner_starts_checkout(self, client, luna, add_member, identity_provider, billing_client):
        add_member(luna, "user_1", MemberRole.OWNER)
        headers = member_headers(client, identity_provider, luna)

        response = client.post(
            "/api/billing/checkout",
            json={"plan_key": "professional", "interval": "monthly"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["url"] == "https://checkout.stripe.test/cs_1"
        assert response.json()["session_type"] == "checkout"
        kwargs = billing_client.create_checkout_session.call_args.kwargs
        assert kwargs["tenant_id"] == luna.id
        assert kwargs["trial_days"] == 30

    def test_past_due_tenant_is_sent_to_portal(
        self, client, make_tenant, add_member, make_subscription, identity_provider, billing_client
    ):
        tenant = make_tenant(slug="salon-a", stripe_customer_id="cus_123")
        add_member(tenant, "user_1", MemberRole.OWNER)
        make_subscription(tenant, SubscriptionStatus.PAST_DUE, external_subscription_id="sub_123")
        headers = member_headers(client, identity_provider, tenant)

        response = client.post(
            "/api/billing/checkout", json={"plan_key": "professional"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["session_type"] == "portal"
        billing_client.create_checkout_session.assert_not_called()

    @pytest.mark.security
    def test_staff_cannot_start_checkout(
        self, client, luna, add_member, identity_provider, billing_client
    ):
        add_member(luna, "user_1", MemberRole.STAFF)
        headers = member_headers(client, identity_provider, luna)

        response = client.post(
            "/api/billing/checkout", json={"plan_key": "professional"}, headers=headers
        )

        assert response.status_code == 403
        billing_client.create_checkout_session.assert_not_called()

    def test_unknown_interval_is_400(self, client, luna, add_member, identity_provider):
        add_member(luna, "user_1", MemberRole.ADMIN)
        headers = member_headers(client, identity_provider, luna)

        response = client.post(
            "/api/billing/checkout",
            json={"plan_key": "professional", "interval": "weekly"},
            headers=headers,
        )

        assert response.status_code == 400

    def test_unknown_plan_is_404(self, client, luna, add_member, identity_provider):
        add_member(luna, "user_1", MemberRole.ADMIN)
        headers = member_headers(client, identity_provider, luna)

        response = client.post(
            "/api/billing/checkout", json={"plan_key": "enterprise"}, headers=headers
        )

        assert response.status_code == 404

    def test_provider_failure_is_502(
        self, client, luna, add_member, identity_provider, billing_client
    ):
        add_member(luna, "user_1", MemberRole.OWNER)
        billing_client.create_customer.side_effect = StripeBillingError("Stripe down")
        headers = member_headers(client, identity_provider, luna)

        response = client.post(
            "/api/billing/checkout", json={"plan_key": "professional"}, headers=headers
        )

        assert response.status_code == 502

    def test_portal_without_customer_is_409(self, client, luna, add_member, identity_provider):
        add_member(luna, "user_1", MemberRole.OWNER)
        headers = member_headers(client, identity_provider, luna)

        response = client.post("/api/billing/portal", json={}, headers=headers)

        assert response.status_code == 409

    def test_portal_for_billing_customer(
        self, client, make_tenant, add_member, identity_provider
    ):
        tenant = make_tenant(slug="salon-a", stripe_customer_id="cus_123")
        add_member(tenant, "user_1", MemberRole.ADMIN)
        headers = member_headers(client, identity_provider, tenant)

        response = client.post("/api/billing/portal", json={}, headers=headers)

        assert response.status_code == 200
        assert response.json()["session_type"] == "portal"

    def test_staff_reads_lapsed_subscription(
        self, client, luna, add_member, identity_provider, make_subscription
    ):
        add_member(luna, "user_1", MemberRole.STAFF)
        make_subscription(luna, SubscriptionStatus.PAST_DUE)
        headers = member_headers(client, identity_provider, luna)

        response = client.get("/api/billing/subscription", headers=headers)

        assert response.status_code == 200
        assert response.json()["status"] == "past_due"
        assert response.json()["entitled"] is False
        assert response.json()["reason"] == "payment_issue"
