import json
from datetime import datetime, timedelta, timezone

import pytest
import stripe

from mediz.domain.events import SubscriptionCancelledEvent, SubscriptionEvent
from mediz.services.stripe_service import StripeService

from helpers import STRIPE_WEBHOOK_SECRET, sign_stripe_payload, stripe_subscription_event


@pytest.fixture
def service() -> StripeService:
    return StripeService(secret_key=None, webhook_secret=STRIPE_WEBHOOK_SECRET)


@pytest.fixture
def period():
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return start, start + timedelta(days=31)


def test_construct_event_returns_plain_dict(service, period):
    payload = stripe_subscription_event(start=period[0], end=period[1])

    event = service.construct_event(payload, sign_stripe_payload(payload))

    assert isinstance(event, dict)
    assert event["data"]["object"]["id"] == "sub_1"


def test_construct_event_rejects_bad_signature(service, period):
    payload = stripe_subscription_event(start=period[0], end=period[1])

    with pytest.raises(stripe.SignatureVerificationError):
        service.construct_event(payload, sign_stripe_payload(payload, secret="whsec_wrong"))


def test_construct_event_requires_secret(period):
    payload = stripe_subscription_event(start=period[0], end=period[1])
    with pytest.raises(ValueError):
        StripeService(None, None).construct_event(payload, sign_stripe_payload(payload))


def test_subscription_update_normalization(service, period):
    event = json.loads(
        stripe_subscription_event(start=period[0], end=period[1], status="trialing", cancel_at_period_end=True, created=1714521600)
    )

    normalized = service.to_reconciler_event(event)

    assert isinstance(normalized, SubscriptionEvent)
    assert normalized.external_subscription_id == "sub_1"
    assert normalized.external_plan_id == "price_monthly"
    assert normalized.user_external_customer_id == "cus_123"
    assert normalized.raw_status == "trialing"
    assert normalized.cancel_at_period_end is True
    assert normalized.period_start_epoch_seconds == int(period[0].timestamp())
    assert normalized.period_end_epoch_seconds == int(period[1].timestamp())
    assert normalized.event_created_epoch_seconds == 1714521600


def test_item_level_period_fallback(service, period):
    subscription = {
        "id": "sub_9",
        "customer": {"id": "cus_123", "object": "customer"},
        "status": "active",
        "items": {
            "data": [
                {
                    "price": "price_monthly",
                    "current_period_start": int(period[0].timestamp()),
                    "current_period_end": int(period[1].timestamp()),
                }
            ]
        },
    }

    normalized = service.normalize_subscription(subscription)

    assert normalized.user_external_customer_id == "cus_123"
    assert normalized.external_plan_id == "price_monthly"
    assert normalized.period_end_epoch_seconds == int(period[1].timestamp())


def test_subscription_without_period_rejected(service):
    with pytest.raises(ValueError):
        service.normalize_subscription({"id": "sub_x", "customer": "cus_1", "status": "active", "items": {"data": []}})


def test_deleted_event_becomes_cancellation(service, period):
    event = json.loads(
        stripe_subscription_event("customer.subscription.deleted", start=period[0], end=period[1], status="canceled")
    )

    normalized = service.to_reconciler_event(event)

    assert isinstance(normalized, SubscriptionCancelledEvent)
    assert normalized.raw_status == "canceled"


def test_unrelated_event_ignored(service):
    assert service.to_reconciler_event({"type": "invoice.paid", "data": {"object": {}}}) is None
