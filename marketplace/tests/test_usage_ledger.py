"""
Daily usage ledger: day keys, rollover, totals.
"""
import gc
from datetime import datetime, timedelta, timezone

import pytest

from marketplace.core.errors import NotFoundError, QuotaExceededError
from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.features.subscriptions.query import get_subscription
from marketplace.features.usage.service import (
    get_today_usage,
    get_usage_ledger,
    record_publish,
    usage_date_for,
)
from marketplace.models.subscription import PaymentMethod


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def subscription(seeded_plans, store):
    return activate_subscription(
        store.store_id, seeded_plans["premium"].plan_id, PaymentMethod.MANUAL, "admin-1", now=T0
    )


def test_usage_date_uses_reference_timezone():
    late_evening_utc = datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)
    assert usage_date_for(late_evening_utc, "UTC") == "2026-03-01"
    assert usage_date_for(late_evening_utc, "Asia/Tokyo") == "2026-03-02"


def test_naive_datetime_is_treated_as_utc():
    assert usage_date_for(datetime(2026, 3, 1, 23, 59), "UTC") == "2026-03-01"


def test_no_entry_means_zero(subscription):
    assert get_today_usage(subscription.subscription_id, T0) == 0
    assert get_usage_ledger(subscription.subscription_id) == []


def test_record_creates_then_increments_entry(subscription):
    assert record_publish(subscription.subscription_id, T0) == 1
    assert record_publish(subscription.subscription_id, T0 + timedelta(hours=2)) == 2

    ledger = get_usage_ledger(subscription.subscription_id)
    assert [(e.date, e.products_published) for e in ledger] == [("2026-03-01", 2)]


def test_day_rollover_reads_zero(subscription):
    record_publish(subscription.subscription_id, T0)
    record_publish(subscription.subscription_id, T0)

    next_day = T0 + timedelta(days=1)
    assert get_today_usage(subscription.subscription_id, next_day) == 0

    record_publish(subscription.subscription_id, next_day)
    ledger = get_usage_ledger(subscription.subscription_id)
    assert [(e.date, e.products_published) for e in ledger] == [("2026-03-01", 2), ("2026-03-02", 1)]


def test_total_equals_sum_of_ledger(subscription):
    for offset in (0, 0, 1, 2, 2, 2):
        record_publish(subscription.subscription_id, T0 + timedelta(days=offset))

    refreshed = get_subscription(subscription.subscription_id)
    assert refreshed.total_products_published == 6
    assert sum(e.products_published for e in refreshed.daily_usage) == 6
    assert refreshed.usage_for("2026-03-03") == 3


def test_guarded_record_stops_at_limit(subscription):
    record_publish(subscription.subscription_id, T0, limit=1)

    with pytest.raises(QuotaExceededError) as exc:
        record_publish(subscription.subscription_id, T0, limit=1)

    assert exc.value.reason == "daily_limit_reached"
    assert get_today_usage(subscription.subscription_id, T0) == 1
    assert get_subscription(subscription.subscription_id).total_products_published == 1


def test_unlimited_limit_is_not_a_guard(subscription):
    for _ in range(5):
        record_publish(subscription.subscription_id, T0, limit=-1)
    assert get_today_usage(subscription.subscription_id, T0) == 5


def test_unknown_subscription():
    with pytest.raises(NotFoundError):
        record_publish("00000000-0000-0000-0000-000000000000", T0)


def test_publish_lock_is_shared_while_held_and_released_after(subscription):
    from marketplace.features.usage import service as usage_service

    held = usage_service._subscription_lock(subscription.subscription_id)
    assert usage_service._subscription_lock(subscription.subscription_id) is held
    del held
    gc.collect()

    record_publish(subscription.subscription_id, T0)
    gc.collect()
    assert subscription.subscription_id not in usage_service._locks
