"""Provider-neutral billing events and reconciliation outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import Subscription

PROVIDER_STRIPE = "stripe"
PROVIDER_HOTMART = "hotmart"
PROVIDER_ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class SubscriptionEvent:
    """A verified subscription created/updated event, already normalized by an adapter.

    ``period_end_epoch_seconds`` may be ``None`` when the provider does not
    report one; the reconciler then derives it from the plan interval.
    ``event_created_epoch_seconds`` is the provider's generation time and
    drives the stale-event guard when present.
    """

    external_subscription_id: str
    external_plan_id: str
    user_external_customer_id: str
    raw_status: str
    period_start_epoch_seconds: float
    period_end_epoch_seconds: Optional[float] = None
    cancel_at_period_end: bool = False
    provider: str = PROVIDER_STRIPE
    event_created_epoch_seconds: Optional[float] = None


@dataclass(frozen=True, slots=True)
class SubscriptionCancelledEvent:
    external_subscription_id: str
    raw_status: str = "canceled"
    provider: str = PROVIDER_STRIPE
    event_created_epoch_seconds: Optional[float] = None


OUTCOME_APPLIED = "applied"
OUTCOME_SKIPPED = "skipped"
OUTCOME_STALE = "stale"


@dataclass(slots=True)
class ReconciliationOutcome:
    result: str
    external_subscription_id: str
    reason: Optional[str] = None
    subscription: Optional[Subscription] = None

    @property
    def applied(self) -> bool:
        return self.result == OUTCOME_APPLIED

    @classmethod
    def skipped(cls, external_subscription_id: str, reason: str) -> "ReconciliationOutcome":
        return cls(OUTCOME_SKIPPED, external_subscription_id, reason=reason)
