"""
Expiration and expiry-warning sweeps.
"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, update

from marketplace.core.database import get_db_session, store_profiles, store_subscriptions
from marketplace.features.events import SUBSCRIPTION_EXPIRED, SUBSCRIPTION_EXPIRY_WARNING
from marketplace.features.settings.service import save_subscription_settings
from marketplace.features.stores.service import create_store, get_store_snapshot
from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.features.subscriptions.query import get_subscription
from marketplace.features.subscriptions.sweeps import run_expiration_sweep, run_expiry_warning_sweep
from marketplace.models.subscription import PaymentMethod, SubscriptionStatus


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _activate(store_id, plan_id, now=T0):
    return activate_subscription(store_id, plan_id, PaymentMethod.MANUAL, "admin-1", now=now)


class TestExpirationSweep:
    def test_skipped_when_system_disabled(self, seeded_plans, store, recorded_events):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)

        result = run_expiration_sweep(T0 + timedelta(days=40))

        assert result.skipped is True
        assert get_subscription(sub.subscription_id).status == SubscriptionStatus.ACTIVE
        assert not [e for e in recorded_events if e.name == SUBSCRIPTION_EXPIRED]

    def test_expires_due_subscriptions_only(self, subscription_system, seeded_plans, store, recorded_events):
        due = _activate(store.store_id, seeded_plans["basic"].plan_id)
        other = create_store("Later Store")
        later = _activate(other.store_id, seeded_plans["basic"].plan_id, now=T0 + timedelta(days=10))

        result = run_expiration_sweep(T0 + timedelta(days=30))

        assert result.processed == 1
        assert result.subscription_ids == [due.subscription_id]
        assert get_subscription(due.subscription_id).status == SubscriptionStatus.EXPIRED
        assert get_subscription(later.subscription_id).status == SubscriptionStatus.ACTIVE
        assert get_store_snapshot(store.store_id).has_active_subscription is False
        assert get_store_snapshot(other.store_id).has_active_subscription is True

        expired = [e for e in recorded_events if e.name == SUBSCRIPTION_EXPIRED]
        assert [e.payload["storeId"] for e in expired] == [store.store_id]
        assert expired[0].payload["planName"] == "Basic Plan"

    def test_second_run_is_a_no_op(self, subscription_system, seeded_plans, store, recorded_events):
        _activate(store.store_id, seeded_plans["basic"].plan_id)
        later = T0 + timedelta(days=31)

        first = run_expiration_sweep(later)
        events_after_first = len(recorded_events)
        second = run_expiration_sweep(later)

        assert first.processed == 1
        assert second.processed == 0
        assert len(recorded_events) == events_after_first

    def test_missing_store_does_not_abort_batch(self, subscription_system, seeded_plans, store):
        orphan_store = create_store("Orphan")
        orphan = _activate(orphan_store.store_id, seeded_plans["basic"].plan_id)
        regular = _activate(store.store_id, seeded_plans["basic"].plan_id)
        with get_db_session() as session:
            session.execute(delete(store_profiles).where(store_profiles.c.store_id == orphan_store.store_id))

        result = run_expiration_sweep(T0 + timedelta(days=31))

        assert result.processed == 2
        assert result.failed == 0
        assert get_subscription(orphan.subscription_id).status == SubscriptionStatus.EXPIRED
        assert get_subscription(regular.subscription_id).status == SubscriptionStatus.EXPIRED

    def test_dangling_plan_falls_back_to_unknown(self, subscription_system, seeded_plans, store, recorded_events):
        sub = _activate(store.store_id, seeded_plans["basic"].plan_id)
        with get_db_session() as session:
            session.execute(
                update(store_subscriptions)
                .where(store_subscriptions.c.subscription_id == sub.subscription_id)
                .values(plan_id="00000000-0000-0000-0000-00000000dead")
            )

        run_expiration_sweep(T0 + timedelta(days=31))

        expired = [e for e in recorded_events if e.name == SUBSCRIPTION_EXPIRED]
        assert expired[0].payload["planName"] == "Unknown"

    def test_per_item_failure_is_counted(self, subscription_system, seeded_plans, store, monkeypatch):
        other = create_store("Second Store")
        _activate(store.store_id, seeded_plans["basic"].plan_id)
        second = _activate(other.store_id, seeded_plans["basic"].plan_id, now=T0 + timedelta(hours=1))

        from marketplace.features.subscriptions import sweeps

        real_reset = sweeps.reset_snapshot

        def flaky_reset(session, store_id):
            if store_id == store.store_id:
                raise RuntimeError("store backend unavailable")
            return real_reset(session, store_id)

        monkeypatch.setattr(sweeps, "reset_snapshot", flaky_reset)
        result = run_expiration_sweep(T0 + timedelta(days=31))

        assert result.failed == 1
        assert result.processed == 1
        assert result.subscription_ids == [second.subscription_id]


class TestExpiryWarningSweep:
    def test_warns_inside_horizon(self, subscription_system, seeded_plans, store, recorded_events):
        _activate(store.store_id, seeded_plans["standard"].plan_id)
        # 2.5 days before the end date
        now = T0 + timedelta(days=27, hours=12)

        result = run_expiry_warning_sweep(now)

        assert result.processed == 1
        warning = [e for e in recorded_events if e.name == SUBSCRIPTION_EXPIRY_WARNING][0]
        assert warning.payload["daysLeft"] == 3
        assert warning.payload["expiryDate"] == "2026-03-31"
        assert warning.payload["planName"] == "Standard Plan"

    def test_outside_horizon_is_ignored(self, subscription_system, seeded_plans, store):
        _activate(store.store_id, seeded_plans["standard"].plan_id)
        assert run_expiry_warning_sweep(T0 + timedelta(days=20)).processed == 0

    def test_already_past_end_date_is_ignored(self, subscription_system, seeded_plans, store):
        _activate(store.store_id, seeded_plans["standard"].plan_id)
        assert run_expiry_warning_sweep(T0 + timedelta(days=31)).processed == 0

    def test_horizon_from_settings(self, seeded_plans, store):
        save_subscription_settings(enabled=True, expiry_warning_days=10)
        _activate(store.store_id, seeded_plans["standard"].plan_id)

        assert run_expiry_warning_sweep(T0 + timedelta(days=21)).processed == 1

    def test_no_dedup_between_runs(self, subscription_system, seeded_plans, store, recorded_events):
        _activate(store.store_id, seeded_plans["standard"].plan_id)

        run_expiry_warning_sweep(T0 + timedelta(days=28))
        run_expiry_warning_sweep(T0 + timedelta(days=29))

        warnings = [e for e in recorded_events if e.name == SUBSCRIPTION_EXPIRY_WARNING]
        assert [w.payload["daysLeft"] for w in warnings] == [2, 1]

    def test_read_only(self, subscription_system, seeded_plans, store):
        sub = _activate(store.store_id, seeded_plans["standard"].plan_id)
        run_expiry_warning_sweep(T0 + timedelta(days=29))
        assert get_subscription(sub.subscription_id).status == SubscriptionStatus.ACTIVE
        assert get_store_snapshot(store.store_id).has_active_subscription is True

    def test_skipped_when_system_disabled(self, seeded_plans, store):
        _activate(store.store_id, seeded_plans["standard"].plan_id)
        result = run_expiry_warning_sweep(T0 + timedelta(days=29))
        assert result.skipped is True
        assert result.processed == 0
