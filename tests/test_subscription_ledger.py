from datetime import datetime, timedelta, timezone

import pytest

from mediz.domain.exceptions import PlanNotFound, SubscriptionNotFound, UserNotFound
from mediz.domain.models.subscription import ADMIN_ID_PREFIX


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _store(ledger, external_id, user, plan, start, end, status="active"):
    subscription, _ = ledger.upsert_subscription_by_external_id(
        external_id,
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        current_period_start=start,
        current_period_end=end,
        provider="stripe",
    )
    return subscription


def test_drift_is_corrected_once(ledger, user, monthly_plan):
    subscription = _store(ledger, "sub_drift", user, monthly_plan, _utc(2024, 5, 1), _utc(2024, 5, 25))

    assert ledger.recalculate_period_end(subscription.id) is True
    assert ledger.get_subscription(subscription.id).current_period_end == _utc(2024, 6, 1)
    assert ledger.recalculate_period_end(subscription.id) is False


def test_time_of_day_difference_is_not_drift(ledger, user, monthly_plan):
    subscription = _store(
        ledger, "sub_tod", user, monthly_plan, _utc(2024, 5, 1, 10), _utc(2024, 6, 1, 0, 5)
    )
    assert ledger.recalculate_period_end(subscription.id) is False


def test_recalculate_all_reports_updated_ids(ledger, user, other_user, monthly_plan, yearly_plan):
    ok = _store(ledger, "sub_ok", user, yearly_plan, _utc(2023, 3, 10), _utc(2024, 3, 10))
    bad = _store(ledger, "sub_bad", other_user, monthly_plan, _utc(2024, 1, 31), _utc(2024, 3, 2))

    summary = ledger.recalculate_all_periods()

    assert summary.total == 2
    assert summary.updated_ids == [bad.id]
    assert ledger.get_subscription(bad.id).current_period_end == _utc(2024, 2, 29)
    assert ledger.get_subscription(ok.id).current_period_end == _utc(2024, 3, 10)


def test_recalculate_user_scope(ledger, user, other_user, monthly_plan):
    _store(ledger, "sub_a", user, monthly_plan, _utc(2024, 5, 1), _utc(2024, 5, 20))
    _store(ledger, "sub_b", other_user, monthly_plan, _utc(2024, 5, 1), _utc(2024, 5, 20))

    summary = ledger.recalculate_user_periods(user.id)

    assert (summary.total, summary.updated_count) == (1, 1)


def test_active_listing_and_multiple_detection(ledger, user, other_user, monthly_plan, yearly_plan, now):
    _store(ledger, "sub_1", user, monthly_plan, now - timedelta(days=1), now + timedelta(days=29))
    _store(ledger, "sub_2", user, yearly_plan, now - timedelta(days=1), now + timedelta(days=364), "trialing")
    _store(ledger, "sub_3", other_user, monthly_plan, now - timedelta(days=40), now - timedelta(days=10))
    _store(ledger, "sub_4", other_user, monthly_plan, now - timedelta(days=1), now + timedelta(days=29), "past_due")

    assert len(ledger.list_active_subscriptions_for_user(user.id, now)) == 2
    assert ledger.list_active_subscriptions_for_user(other_user.id, now) == []
    assert ledger.find_users_with_multiple_active(now) == [user.id]


def test_history_keeps_lapsed_rows(ledger, user, monthly_plan, now):
    _store(ledger, "sub_old", user, monthly_plan, now - timedelta(days=60), now - timedelta(days=30), "canceled")
    _store(ledger, "sub_new", user, monthly_plan, now - timedelta(days=1), now + timedelta(days=29))

    history = ledger.list_subscriptions_for_user(user.id)

    assert {sub.external_subscription_id for sub in history} == {"sub_old", "sub_new"}


def test_manual_subscription_defaults_end_from_plan(ledger, user, monthly_plan):
    subscription = ledger.create_manual_subscription(
        user.id, monthly_plan.id, "active", _utc(2024, 1, 31)
    )

    assert subscription.external_subscription_id.startswith(ADMIN_ID_PREFIX)
    assert subscription.provider == "admin"
    assert subscription.current_period_end == _utc(2024, 2, 29)


def test_manual_subscription_checks_references(ledger, user, monthly_plan):
    with pytest.raises(UserNotFound):
        ledger.create_manual_subscription(999, monthly_plan.id, "active", _utc(2024, 1, 1))
    with pytest.raises(PlanNotFound):
        ledger.create_manual_subscription(user.id, 999, "active", _utc(2024, 1, 1))
    with pytest.raises(ValueError):
        ledger.create_manual_subscription(
            user.id, monthly_plan.id, "active", _utc(2024, 2, 1), _utc(2024, 1, 1)
        )


def test_update_and_delete(ledger, user, monthly_plan, yearly_plan):
    subscription = ledger.create_manual_subscription(user.id, monthly_plan.id, "active", _utc(2024, 1, 1))

    updated = ledger.update_subscription(subscription.id, plan_id=yearly_plan.id, status="CANCELED")
    assert (updated.plan_id, updated.status) == (yearly_plan.id, "canceled")
    assert updated.current_period_start == _utc(2024, 1, 1)

    ledger.delete_subscription(subscription.id)
    with pytest.raises(SubscriptionNotFound):
        ledger.get_subscription(subscription.id)
    with pytest.raises(SubscriptionNotFound):
        ledger.delete_subscription(subscription.id)


def test_update_rejects_inverted_period(ledger, user, monthly_plan):
    subscription = ledger.create_manual_subscription(user.id, monthly_plan.id, "active", _utc(2024, 1, 1))

    with pytest.raises(ValueError):
        ledger.update_subscription(subscription.id, current_period_end=_utc(2023, 12, 31))
    with pytest.raises(ValueError):
        ledger.update_subscription(
            subscription.id, current_period_start=_utc(2024, 3, 1), current_period_end=_utc(2024, 2, 1)
        )

    assert ledger.get_subscription(subscription.id).current_period_start == _utc(2024, 1, 1)
