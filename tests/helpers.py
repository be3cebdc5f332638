"""Payload builders shared by the webhook tests."""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
HOTMART_HOTTOK = "hottok-test"
ADMIN_EMAIL = "admin@mediz.com.br"
ADMIN_PASSWORD = "s3cret-pass"


def sign_stripe_payload(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_subscription_event(
    event_type: str = "customer.subscription.updated",
    *,
    subscription_id: str = "sub_1",
    customer: str = "cus_123",
    price: str = "price_monthly",
    status: str = "active",
    start: datetime,
    end: datetime,
    cancel_at_period_end: bool = False,
    created: int = None,
) -> bytes:
    event = {
        "id": "evt_test",
        "object": "event",
        "type": event_type,
        "created": created or int(time.time()),
        "data": {
            "object": {
                "id": subscription_id,
                "object": "subscription",
                "customer": customer,
                "status": status,
                "cancel_at_period_end": cancel_at_period_end,
                "current_period_start": int(start.timestamp()),
                "current_period_end": int(end.timestamp()),
                "items": {"object": "list", "data": [{"id": "si_1", "price": {"id": price}}]},
            }
        },
    }
    return json.dumps(event).encode("utf-8")


def hotmart_postback(
    event: str = "PURCHASE_APPROVED",
    *,
    transaction: str = "HP123",
    email: str = "Comprador@Mediz.com.br",
    offer_code: str = "offer_month",
    product_id: int = 555,
    approved_at: datetime = None,
) -> dict:
    approved_at = approved_at or datetime.now(timezone.utc) - timedelta(days=1)
    approved_ms = int(approved_at.timestamp() * 1000)
    return {
        "id": f"evt-{transaction}-{event}",
        "event": event,
        "creation_date": approved_ms,
        "version": "2.0.0",
        "data": {
            "product": {"id": product_id, "name": "meDIZ"},
            "buyer": {"email": email, "first_name": "Maria", "last_name": "Silva"},
            "purchase": {
                "transaction": transaction,
                "status": "APPROVED",
                "order_date": approved_ms,
                "approved_date": approved_ms,
                "price": {"value": 29.9, "currency_value": "BRL"},
                "offer": {"code": offer_code},
            },
        },
    }
