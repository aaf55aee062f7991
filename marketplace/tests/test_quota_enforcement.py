"""
Publish gate: decision order, deny reasons, toggle, monotonicity.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from marketplace.core.database import get_db_session, store_subscriptions
from marketplace.core.errors import NotFoundError, QuotaExceededError
from marketplace.features.events import SUBSCRIPTION_DAILY_LIMIT_REACHED
from marketplace.features.plans.service import create_plan
from marketplace.features.quota.service import (
    authorize_publish,
    enforce_publish_quota,
    evaluate_publish_quota,
    get_publish_context,
)
from marketplace.features.stores.service import create_store
from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.features.usage.service import get_today_usage, record_publish
from marketplace.models.plan import PlanCreate, PlanFeatures, PlanTier
from marketplace.models.quota import DenyReason
from marketplace.models.subscription import PaymentMethod


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _activate(store_id, plan_id, now=T0):
    return activate_subscription(store_id, plan_id, PaymentMethod.MANUAL, "admin-1", now=now)


def _plan(daily_limit, max_images=3, max_variants=2):
    return create_plan(
        PlanCreate(
            name=f"Limit {daily_limit}",
            tier=PlanTier.STANDARD,
            duration_days=30,
            features=PlanFeatures(
                daily_product_limit=daily_limit,
                max_images_per_product=max_images,
                max_variants_per_product=max_variants,
            ),
        )
    )


class TestSystemToggle:
    def test_disabled_system_allows_everything(self, store):
        decision = evaluate_publish_quota(store.store_id, 99, system_enabled=False, now=T0)
        assert decision.allowed is True
        assert decision.bypassed is True

    def test_disabled_system_skips_recording(self, store):
        decision = authorize_publish(store.store_id, 1, system_enabled=False, now=T0)
        assert decision.allowed is True
        assert decision.bypassed is True


class TestDenyReasons:
    def test_missing_store_is_not_found(self):
        with pytest.raises(NotFoundError):
            evaluate_publish_quota("00000000-0000-0000-0000-000000000000", 1, system_enabled=True, now=T0)

    def test_inactive_snapshot(self, store):
        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        assert decision.allowed is False
        assert decision.reason == DenyReason.NO_ACTIVE_SUBSCRIPTION
        assert "expired" in decision.message

    def test_snapshot_drift_is_subscription_not_found(self, seeded_plans, store):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)
        # Subscription flipped without touching the snapshot
        with get_db_session() as session:
            session.execute(
                update(store_subscriptions)
                .where(store_subscriptions.c.subscription_id == sub.subscription_id)
                .values(status="EXPIRED")
            )

        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        assert decision.reason == DenyReason.SUBSCRIPTION_NOT_FOUND
        assert decision.message.startswith("No active subscription found")

    def test_expired_before_sweep(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["basic"].plan_id)

        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0 + timedelta(days=31))
        assert decision.reason == DenyReason.SUBSCRIPTION_EXPIRED

    def test_image_limit(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["basic"].plan_id)

        assert evaluate_publish_quota(store.store_id, 2, system_enabled=True, now=T0).allowed is True
        decision = evaluate_publish_quota(store.store_id, 3, system_enabled=True, now=T0)
        assert decision.reason == DenyReason.IMAGE_LIMIT_EXCEEDED
        assert decision.message == "Image limit exceeded. Your plan allows maximum 2 images per product."

    def test_variant_limit_only_checked_when_given(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["basic"].plan_id)

        assert evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0).allowed is True
        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0, variant_count=6)
        assert decision.reason == DenyReason.VARIANT_LIMIT_EXCEEDED

    def test_unlimited_variants(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["premium"].plan_id)
        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0, variant_count=500)
        assert decision.allowed is True

    def test_daily_limit_takes_precedence_over_images(self, seeded_plans, store, recorded_events):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)
        record_publish(sub.subscription_id, T0)
        record_publish(sub.subscription_id, T0)

        decision = evaluate_publish_quota(store.store_id, 10, system_enabled=True, now=T0)
        assert decision.reason == DenyReason.DAILY_LIMIT_REACHED
        assert decision.message == (
            "Daily product limit reached (2 products/day). Please upgrade your plan or wait until tomorrow."
        )
        limit_events = [e for e in recorded_events if e.name == SUBSCRIPTION_DAILY_LIMIT_REACHED]
        assert len(limit_events) == 1
        assert limit_events[0].payload["dailyLimit"] == 2
        assert limit_events[0].payload["storeId"] == store.store_id


class TestQuotaMonotonicity:
    @pytest.mark.parametrize("limit", [1, 2, 5])
    def test_allows_at_limit_minus_one_denies_at_limit(self, store, limit):
        plan = _plan(limit)
        sub = _activate(store.store_id, plan.plan_id)

        for _ in range(limit - 1):
            record_publish(sub.subscription_id, T0)
        assert evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0).allowed is True

        record_publish(sub.subscription_id, T0)
        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        assert decision.allowed is False
        assert decision.reason == DenyReason.DAILY_LIMIT_REACHED

    def test_usage_above_limit_still_denies(self, store):
        plan = _plan(2)
        sub = _activate(store.store_id, plan.plan_id)
        for _ in range(4):
            record_publish(sub.subscription_id, T0)

        decision = evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        assert decision.reason == DenyReason.DAILY_LIMIT_REACHED


class TestEnforceAndAuthorize:
    def test_enforce_raises_with_reason(self, store):
        with pytest.raises(QuotaExceededError) as exc:
            enforce_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        assert exc.value.reason == "no_active_subscription"
        assert exc.value.status_code == 403
        assert exc.value.details["reason"] == "no_active_subscription"

    def test_allow_populates_request_context(self, seeded_plans, store):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)

        evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)
        context = get_publish_context()
        assert context.subscription.subscription_id == sub.subscription_id
        assert context.snapshot.daily_product_limit == 2

    def test_deny_clears_request_context(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["basic"].plan_id)
        evaluate_publish_quota(store.store_id, 1, system_enabled=True, now=T0)

        evaluate_publish_quota(store.store_id, 9, system_enabled=True, now=T0)
        assert get_publish_context() is None

    def test_authorize_records_usage(self, seeded_plans, store):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)

        first = authorize_publish(store.store_id, 1, system_enabled=True, now=T0)
        second = authorize_publish(store.store_id, 2, system_enabled=True, now=T0)
        assert (first.today_usage, second.today_usage) == (1, 2)

        with pytest.raises(QuotaExceededError) as exc:
            authorize_publish(store.store_id, 1, system_enabled=True, now=T0)
        assert exc.value.reason == "daily_limit_reached"
        assert get_today_usage(sub.subscription_id, T0) == 2

    def test_stores_are_independent(self, seeded_plans, store):
        other = create_store("Other Store")
        _activate(store.store_id, seeded_plans["basic"].plan_id)
        _activate(other.store_id, seeded_plans["basic"].plan_id)

        authorize_publish(store.store_id, 1, system_enabled=True, now=T0)
        authorize_publish(store.store_id, 1, system_enabled=True, now=T0)

        assert authorize_publish(other.store_id, 1, system_enabled=True, now=T0).today_usage == 1
