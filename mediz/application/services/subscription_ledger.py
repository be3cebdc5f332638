"""Typed storage and repair operations for subscription rows."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ...domain.events import PROVIDER_ADMIN
from ...domain.exceptions import PlanNotFound, SubscriptionNotFound, UserNotFound
from ...domain.models import Plan, Subscription
from ...domain.models.subscription import ADMIN_ID_PREFIX
from ...domain.periods import PeriodDrift, add_interval, ensure_utc, same_day
from ...domain.ports.persistence import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecalculationSummary:
    total: int = 0
    updated_count: int = 0
    updated_ids: List[int] = field(default_factory=list)


class SubscriptionLedger:
    """Service over the subscription rows of every user.

    Enforces referential integrity only; entitlement and reconciliation
    rules live in their own services.
    """

    def __init__(self, persistence: PersistenceGateway) -> None:
        self._persistence = persistence

    def upsert_subscription_by_external_id(
        self,
        external_id: str,
        *,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: datetime,
        provider: str,
        event_at: Optional[datetime] = None,
    ) -> tuple[Subscription, bool]:
        """
        Insert or overwrite the row keyed by ``external_id`` in one statement.

        Returns:
            Tuple of (Subscription, written). ``written`` is False only when
            the stored row carries a newer provider event than ``event_at``.
        """
        return self._persistence.upsert_subscription(
            external_id,
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            provider=provider,
            event_at=event_at,
        )

    def find_by_external_id(self, external_id: str) -> Optional[Subscription]:
        return self._persistence.get_subscription_by_external_id(external_id)

    def set_status_by_external_id(
        self, external_id: str, status: str, event_at: Optional[datetime] = None
    ) -> Optional[Subscription]:
        return self._persistence.update_subscription_status(external_id, status, event_at)

    def get_subscription(self, subscription_id: int) -> Subscription:
        subscription = self._persistence.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)
        return subscription

    def list_subscriptions_for_user(self, user_id: int) -> List[Subscription]:
        return self._persistence.list_subscriptions_for_user(user_id)

    def list_active_subscriptions_for_user(
        self, user_id: int, as_of: Optional[datetime] = None
    ) -> List[Subscription]:
        as_of = ensure_utc(as_of) if as_of else datetime.now(timezone.utc)
        active = self._persistence.list_entitled_subscriptions(as_of, user_id=user_id)
        if len(active) > 1:
            logger.info(
                "User %s holds %d simultaneously active subscriptions", user_id, len(active)
            )
        return active

    def find_users_with_multiple_active(self, as_of: Optional[datetime] = None) -> List[int]:
        as_of = ensure_utc(as_of) if as_of else datetime.now(timezone.utc)
        return self._persistence.list_entitled_user_ids(as_of, min_rows=2)

    # Period repair ----------------------------------------------------------
    def expected_period_end(self, subscription: Subscription, plan: Plan) -> datetime:
        return add_interval(subscription.current_period_start, plan.interval, plan.interval_count)

    def recalculate_period_end(self, subscription_id: int) -> bool:
        """Recompute and persist ``current_period_end`` when it drifted.

        Returns True when a correction was written.
        """
        subscription = self.get_subscription(subscription_id)
        plan = self._persistence.get_plan(subscription.plan_id)
        if plan is None:
            raise PlanNotFound(str(subscription.plan_id))
        expected = self.expected_period_end(subscription, plan)
        if same_day(subscription.current_period_end, expected):
            return False

        drift = PeriodDrift(subscription.id, subscription.current_period_end, expected)
        self._persistence.set_period_end(subscription.id, expected)
        logger.info(
            "Corrected period end of subscription %s: %s -> %s (%+d days)",
            drift.subscription_id,
            drift.stored_end.date().isoformat(),
            drift.expected_end.date().isoformat(),
            drift.days_off,
        )
        return True

    def recalculate_user_periods(self, user_id: int) -> RecalculationSummary:
        return self._recalculate([sub.id for sub in self.list_subscriptions_for_user(user_id)])

    def recalculate_all_periods(self) -> RecalculationSummary:
        return self._recalculate(self._persistence.list_all_subscription_ids())

    def _recalculate(self, subscription_ids: List[int]) -> RecalculationSummary:
        summary = RecalculationSummary(total=len(subscription_ids))
        for subscription_id in subscription_ids:
            if self.recalculate_period_end(subscription_id):
                summary.updated_count += 1
                summary.updated_ids.append(subscription_id)
        return summary

    # Admin actions ----------------------------------------------------------
    def create_manual_subscription(
        self,
        user_id: int,
        plan_id: int,
        status: str,
        current_period_start: datetime,
        current_period_end: Optional[datetime] = None,
    ) -> Subscription:
        if self._persistence.get_user(user_id) is None:
            raise UserNotFound(user_id)
        plan = self._persistence.get_plan(plan_id)
        if plan is None:
            raise PlanNotFound(str(plan_id))
        start = ensure_utc(current_period_start)
        end = ensure_utc(current_period_end) if current_period_end else add_interval(
            start, plan.interval, plan.interval_count
        )
        if end < start:
            raise ValueError("current_period_end must not precede current_period_start")
        external_id = f"{ADMIN_ID_PREFIX}{secrets.token_hex(8)}"
        subscription = self._persistence.create_subscription(
            external_id,
            user_id=user_id,
            plan_id=plan_id,
            status=status,
            current_period_start=start,
            current_period_end=end,
            provider=PROVIDER_ADMIN,
        )
        logger.info("Admin created subscription %s for user %s", subscription.id, user_id)
        return subscription

    def update_subscription(
        self,
        subscription_id: int,
        *,
        plan_id: Optional[int] = None,
        status: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> Subscription:
        current = self.get_subscription(subscription_id)
        if plan_id is not None and self._persistence.get_plan(plan_id) is None:
            raise PlanNotFound(str(plan_id))
        start = ensure_utc(current_period_start) if current_period_start else current.current_period_start
        end = ensure_utc(current_period_end) if current_period_end else current.current_period_end
        if end < start:
            raise ValueError("current_period_end must not precede current_period_start")
        fields: Dict[str, object] = {
            "plan_id": plan_id,
            "status": status,
            "current_period_start": ensure_utc(current_period_start) if current_period_start else None,
            "current_period_end": ensure_utc(current_period_end) if current_period_end else None,
        }
        return self._persistence.update_subscription(subscription_id, **fields)

    def delete_subscription(self, subscription_id: int) -> None:
        if not self._persistence.delete_subscription(subscription_id):
            raise SubscriptionNotFound(subscription_id)
        logger.info("Admin deleted subscription %s", subscription_id)
