#!/usr/bin/env python3
"""
Script to send signed Stripe events to a local server.

Usage:
    # Start your server first
    uvicorn main:app --reload

    # Then run this script
    python scripts/send_stripe_event.py --tenant <tenant_id> --event checkout_completed
    python scripts/send_stripe_event.py --tenant <tenant_id> --event payment_failed
"""

import argparse
import hashlib
import hmac
import json
import os
import time
import uuid

import httpx

DEFAULT_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
DEFAULT_BASE_URL = os.getenv("TEST_BASE_URL", "http://localhost:8000")
WEBHOOK_PATH = "/api/webhooks/stripe"

SUBSCRIPTION_ID = "sub_local_test"
CUSTOMER_ID = "cus_local_test"


def sign(payload: str, secret: str, timestamp: int) -> str:
    """Build a Stripe-Signature header value for payload."""
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(event_type: str, data_object: dict) -> dict:
    return {
        "id": f"evt_{uuid.uuid4().hex[:24]}",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": data_object},
    }


def subscription_object(tenant_id: str, status: str) -> dict:
    now = int(time.time())
    return {
        "id": SUBSCRIPTION_ID,
        "object": "subscription",
        "customer": CUSTOMER_ID,
        "status": status,
        "trial_end": now + 30 * 86400 if status == "trialing" else None,
        "current_period_end": now + 30 * 86400,
        "cancel_at_period_end": False,
        "metadata": {"tenant_id": tenant_id},
    }


def invoice_object(tenant_id: str, amount_paid: int) -> dict:
    return {
        "id": f"in_{uuid.uuid4().hex[:24]}",
        "object": "invoice",
        "customer": CUSTOMER_ID,
        "subscription": SUBSCRIPTION_ID,
        "amount_paid": amount_paid,
        "subscription_details": {"metadata": {"tenant_id": tenant_id}},
    }


EVENTS = {
    "checkout_completed": lambda t: build_event("checkout.session.completed", {
        "id": "cs_local_test",
        "object": "checkout.session",
        "client_reference_id": t,
        "customer": CUSTOMER_ID,
        "subscription": SUBSCRIPTION_ID,
        "metadata": {"tenant_id": t},
    }),
    "trialing": lambda t: build_event(
        "customer.subscription.created", subscription_object(t, "trialing")
    ),
    "active": lambda t: build_event(
        "customer.subscription.updated", subscription_object(t, "active")
    ),
    "payment_succeeded": lambda t: build_event("invoice.paid", invoice_object(t, 4900)),
    "payment_failed": lambda t: build_event("invoice.payment_failed", invoice_object(t, 0)),
    "deleted": lambda t: build_event(
        "customer.subscription.deleted", subscription_object(t, "canceled")
    ),
}


def send(event: dict, secret: str, base_url: str) -> None:
    payload = json.dumps(event)
    headers = {
        "Content-Type": "application/json",
        "Stripe-Signature": sign(payload, secret, int(time.time())),
    }

    print(f"\n{'='*60}")
    print(f"Sending event: {event['type']} ({event['id']})")
    print(f"{'='*60}\n")

    response = httpx.post(f"{base_url}{WEBHOOK_PATH}", content=payload, headers=headers)
    print(f"Response Status: {response.status_code}")
    print(f"Response Body: {response.text}")


def main():
    parser = argparse.ArgumentParser(description="Send signed Stripe events locally")
    parser.add_argument("--tenant", required=True, help="Tenant id the event belongs to")
    parser.add_argument("--event", choices=list(EVENTS.keys()), required=True)
    parser.add_argument("--secret", default=DEFAULT_SECRET, help="Webhook signing secret")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="Base URL of your server")
    args = parser.parse_args()

    send(EVENTS[args.event](args.tenant), args.secret, args.base_url)


if __name__ == "__main__":
    main()
