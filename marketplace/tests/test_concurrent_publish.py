"""
Concurrent publishes against one subscription never overshoot the daily limit.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from marketplace.core.errors import QuotaExceededError
from marketplace.features.plans.service import create_plan
from marketplace.features.quota.service import authorize_publish
from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.features.subscriptions.query import get_subscription
from marketplace.features.usage.service import get_today_usage, record_publish
from marketplace.models.plan import PlanCreate, PlanFeatures, PlanTier
from marketplace.models.subscription import PaymentMethod


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _limit_three_subscription(store_id):
    plan = create_plan(
        PlanCreate(
            name="Three a day",
            tier=PlanTier.BASIC,
            duration_days=30,
            features=PlanFeatures(daily_product_limit=3, max_images_per_product=5, max_variants_per_product=5),
        )
    )
    return activate_subscription(store_id, plan.plan_id, PaymentMethod.MANUAL, "admin-1", now=T0)


def test_ten_concurrent_publishes_limit_three(store):
    sub = _limit_three_subscription(store.store_id)

    def attempt(_):
        try:
            authorize_publish(store.store_id, 1, system_enabled=True, now=T0)
            return "allowed"
        except QuotaExceededError as e:
            return e.reason

    with ThreadPoolExecutor(max_workers=10) as pool:
        outcomes = list(pool.map(attempt, range(10)))

    assert outcomes.count("allowed") == 3
    assert outcomes.count("daily_limit_reached") == 7
    assert get_today_usage(sub.subscription_id, T0) == 3
    assert get_subscription(sub.subscription_id).total_products_published == 3


def test_concurrent_guarded_records_first_entry_of_day(store):
    sub = _limit_three_subscription(store.store_id)

    def attempt(_):
        try:
            return record_publish(sub.subscription_id, T0, limit=3)
        except QuotaExceededError:
            return None

    with ThreadPoolExecutor(max_workers=8) as pool:
        counts = [c for c in pool.map(attempt, range(8)) if c is not None]

    assert sorted(counts) == [1, 2, 3]
    ledger = get_subscription(sub.subscription_id).daily_usage
    assert len(ledger) == 1
