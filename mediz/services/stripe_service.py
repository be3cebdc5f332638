"""Stripe integration: webhook verification, payload normalization and price catalog."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

import stripe

from ..application.services.plan_catalog import PlanDefinition
from ..domain.events import PROVIDER_STRIPE, SubscriptionCancelledEvent, SubscriptionEvent
from ..domain.models import PlanAttributes

logger = logging.getLogger(__name__)

SUBSCRIPTION_UPSERT_EVENTS = frozenset(
    {"customer.subscription.created", "customer.subscription.updated"}
)
SUBSCRIPTION_DELETED_EVENT = "customer.subscription.deleted"


def _object_id(value: Any) -> Optional[str]:
    """Stripe sends either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")


class StripeService:
    """Manages Stripe API integration for the billing core."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str]) -> None:
        self._webhook_secret = webhook_secret
        if secret_key:
            stripe.api_key = secret_key

    @property
    def webhook_configured(self) -> bool:
        return bool(self._webhook_secret)

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """
        Verify a webhook delivery and return the event as a plain dict.

        Raises:
            ValueError: If the webhook secret is missing or the payload is malformed
            stripe.SignatureVerificationError: If the signature does not match
        """
        if not self._webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        return json.loads(payload)

    def to_reconciler_event(
        self, event: Mapping[str, Any]
    ) -> Optional[Union[SubscriptionEvent, SubscriptionCancelledEvent]]:
        event_type = event.get("type")
        data = event.get("data", {}).get("object", {})
        created = event.get("created")

        if event_type in SUBSCRIPTION_UPSERT_EVENTS:
            return self.normalize_subscription(data, event_created=created)
        if event_type == SUBSCRIPTION_DELETED_EVENT:
            return SubscriptionCancelledEvent(
                external_subscription_id=data["id"],
                raw_status=data.get("status") or "canceled",
                provider=PROVIDER_STRIPE,
                event_created_epoch_seconds=created,
            )
        logger.debug("Ignoring Stripe event type %s", event_type)
        return None

    @staticmethod
    def normalize_subscription(
        subscription: Mapping[str, Any], event_created: Optional[float] = None
    ) -> SubscriptionEvent:
        """
        Map a Stripe subscription object onto the provider-neutral event.

        The billing period is read from the subscription itself. Only API
        versions that dropped the top-level period fields fall back to the
        first item.
        """
        items = (subscription.get("items") or {}).get("data") or []
        first_item: Mapping[str, Any] = items[0] if items else {}
        price_id = _object_id(first_item.get("price")) or ""

        period_start = subscription.get("current_period_start")
        period_end = subscription.get("current_period_end")
        if period_start is None:
            period_start = first_item.get("current_period_start")
            period_end = first_item.get("current_period_end")
        if period_start is None:
            raise ValueError(f"Subscription {subscription.get('id')} has no billing period")

        return SubscriptionEvent(
            external_subscription_id=subscription["id"],
            external_plan_id=price_id,
            user_external_customer_id=_object_id(subscription.get("customer")) or "",
            raw_status=subscription.get("status") or "",
            period_start_epoch_seconds=period_start,
            period_end_epoch_seconds=period_end,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            provider=PROVIDER_STRIPE,
            event_created_epoch_seconds=event_created,
        )

    def fetch_price_catalog(self) -> List[PlanDefinition]:
        """List active recurring Stripe prices as plan catalog definitions."""
        if not stripe.api_key:
            raise ValueError("Stripe not configured. Please set STRIPE_SECRET_KEY first.")

        try:
            prices = stripe.Price.list(active=True, type="recurring", expand=["data.product"])
            definitions = []
            for price in prices.auto_paging_iter():
                recurring = price.recurring
                product = price.product
                name = getattr(product, "name", None) or price.nickname or price.id
                definitions.append(
                    PlanDefinition(
                        external_id=price.id,
                        attributes=PlanAttributes(
                            name=name,
                            currency=price.currency,
                            interval=recurring.interval,
                            interval_count=recurring.interval_count or 1,
                            amount=price.unit_amount or 0,
                            trial_period_days=getattr(recurring, "trial_period_days", None),
                        ),
                    )
                )
            return definitions
        except stripe.AuthenticationError:
            raise ValueError("Invalid Stripe API key")
        except stripe.StripeError as e:
            logger.error("Failed to list prices: %s", str(e))
            raise ValueError(f"Failed to list prices: {str(e)}")
