"""Translate normalized billing-provider events into ledger mutations."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional, Union

from ...domain.events import (
    OUTCOME_APPLIED,
    OUTCOME_STALE,
    PROVIDER_HOTMART,
    ReconciliationOutcome,
    SubscriptionCancelledEvent,
    SubscriptionEvent,
)
from ...domain.exceptions import (
    PlanNotFound,
    ReconciliationFailed,
    UnknownCustomer,
    UnknownSubscription,
)
from ...domain.models import User
from ...domain.models.subscription import STATUS_CANCEL_AT_PERIOD_END, STATUS_CANCELED, normalize_status
from ...domain.periods import add_interval, from_epoch_seconds
from ...domain.ports.persistence import UserDirectory
from .plan_catalog import PlanCatalog
from .subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (sqlite3.Error, RuntimeError)


class Reconciler:
    """Applies provider events to the subscription ledger idempotently.

    Every mutation is a full-state upsert keyed by the external subscription
    id, so replays converge. When ``enforce_event_ordering`` is on and an
    event carries its generation time, an event older than the last one
    applied to the row is reported as stale instead of overwriting it.
    """

    def __init__(
        self,
        catalog: PlanCatalog,
        ledger: SubscriptionLedger,
        users: UserDirectory,
        enforce_event_ordering: bool = True,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._users = users
        self._enforce_event_ordering = enforce_event_ordering

    def apply_subscription_event(self, event: SubscriptionEvent) -> ReconciliationOutcome:
        external_id = event.external_subscription_id
        try:
            user = self._resolve_user(event)
            plan = self._catalog.find_plan_by_external_id(event.external_plan_id)
        except UnknownCustomer as exc:
            logger.warning("Skipping %s event for %s: %s", event.provider, external_id, exc)
            return ReconciliationOutcome.skipped(external_id, "unknown_customer")
        except PlanNotFound as exc:
            logger.warning("Skipping %s event for %s: %s", event.provider, external_id, exc)
            return ReconciliationOutcome.skipped(external_id, "unknown_plan")

        if event.cancel_at_period_end:
            status = STATUS_CANCEL_AT_PERIOD_END
        else:
            status = normalize_status(event.raw_status)

        period_start = from_epoch_seconds(event.period_start_epoch_seconds)
        period_end = from_epoch_seconds(event.period_end_epoch_seconds)
        if period_end is None:
            period_end = add_interval(period_start, plan.interval, plan.interval_count)
        if period_end < period_start:
            logger.warning(
                "Skipping %s event for %s: period ends before it starts", event.provider, external_id
            )
            return ReconciliationOutcome.skipped(external_id, "invalid_period")

        try:
            subscription, written = self._ledger.upsert_subscription_by_external_id(
                external_id,
                user_id=user.id,
                plan_id=plan.id,
                status=status,
                current_period_start=period_start,
                current_period_end=period_end,
                provider=event.provider,
                event_at=self._event_time(event.event_created_epoch_seconds),
            )
        except _STORAGE_ERRORS as exc:
            logger.exception("Ledger write failed for %s", external_id)
            raise ReconciliationFailed(f"Could not store subscription {external_id}", cause=exc) from exc

        if not written:
            logger.info("Ignoring stale %s event for %s", event.provider, external_id)
            return ReconciliationOutcome(OUTCOME_STALE, external_id, subscription=subscription)

        logger.info(
            "Reconciled %s subscription %s: user=%s plan=%s status=%s",
            event.provider,
            external_id,
            user.id,
            plan.id,
            status,
        )
        return ReconciliationOutcome(OUTCOME_APPLIED, external_id, subscription=subscription)

    def apply_subscription_cancelled(
        self,
        external_subscription_id: str,
        raw_status: Optional[str] = STATUS_CANCELED,
        event_created_epoch_seconds: Optional[float] = None,
    ) -> ReconciliationOutcome:
        status = normalize_status(raw_status) or STATUS_CANCELED
        event_at = self._event_time(event_created_epoch_seconds)
        try:
            existing = self._ledger.find_by_external_id(external_subscription_id)
            if existing is None:
                raise UnknownSubscription(external_subscription_id)
            if event_at and existing.last_event_at and event_at < existing.last_event_at:
                logger.info("Ignoring stale cancellation for %s", external_subscription_id)
                return ReconciliationOutcome(OUTCOME_STALE, external_subscription_id, subscription=existing)
            subscription = self._ledger.set_status_by_external_id(
                external_subscription_id, status, event_at
            )
        except UnknownSubscription as exc:
            logger.warning("Skipping cancellation: %s", exc)
            return ReconciliationOutcome.skipped(external_subscription_id, "unknown_subscription")
        except _STORAGE_ERRORS as exc:
            logger.exception("Ledger write failed for %s", external_subscription_id)
            raise ReconciliationFailed(
                f"Could not cancel subscription {external_subscription_id}", cause=exc
            ) from exc

        logger.info("Subscription %s marked %s", external_subscription_id, status)
        return ReconciliationOutcome(OUTCOME_APPLIED, external_subscription_id, subscription=subscription)

    def apply(
        self, event: Union[SubscriptionEvent, SubscriptionCancelledEvent]
    ) -> ReconciliationOutcome:
        if isinstance(event, SubscriptionCancelledEvent):
            return self.apply_subscription_cancelled(
                event.external_subscription_id,
                event.raw_status,
                event.event_created_epoch_seconds,
            )
        return self.apply_subscription_event(event)

    def apply_batch(
        self, events: Iterable[Union[SubscriptionEvent, SubscriptionCancelledEvent]]
    ) -> List[ReconciliationOutcome]:
        """Apply events in order. Benign skips never stop the batch."""
        return [self.apply(event) for event in events]

    def _resolve_user(self, event: SubscriptionEvent) -> User:
        customer_id = event.user_external_customer_id
        user: Optional[User] = None
        if customer_id:
            if event.provider == PROVIDER_HOTMART:
                user = self._users.find_user_by_email(customer_id)
            else:
                user = self._users.find_user_by_stripe_customer(customer_id)
        if user is None:
            raise UnknownCustomer(customer_id, event.provider)
        return user

    def _event_time(self, epoch_seconds: Optional[float]) -> Optional[datetime]:
        if not self._enforce_event_ordering:
            return None
        return from_epoch_seconds(epoch_seconds)
