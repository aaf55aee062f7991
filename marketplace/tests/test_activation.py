"""
Activation: single active subscription, snapshot projection, events.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from marketplace.core.database import get_db_session, store_subscriptions
from marketplace.core.errors import ConflictError, NotFoundError, ValidationError
from marketplace.features.events import SUBSCRIPTION_ACTIVATED
from marketplace.features.stores.service import get_store_snapshot
from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.models.subscription import PaymentMethod, SubscriptionStatus


T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_activation_creates_active_subscription(seeded_plans, store):
    plan = seeded_plans["standard"]
    sub = activate_subscription(
        store.store_id,
        plan.plan_id,
        PaymentMethod.MANUAL,
        "admin-1",
        amount_paid=Decimal("50"),
        payment_reference="RCPT-1",
        now=T0,
    )

    assert sub.status == SubscriptionStatus.ACTIVE
    assert sub.start_date == T0
    assert sub.end_date == T0 + timedelta(days=30)
    assert sub.daily_usage == []
    assert sub.total_products_published == 0
    assert sub.activated_by == "admin-1"
    assert sub.amount_paid == Decimal("50")
    assert sub.plan.name == "Standard Plan"


def test_activation_writes_snapshot(seeded_plans, store):
    plan = seeded_plans["premium"]
    sub = activate_subscription(store.store_id, plan.plan_id, PaymentMethod.FREE_GRANT, "admin-1", now=T0)

    snapshot = get_store_snapshot(store.store_id)
    assert snapshot.has_active_subscription is True
    assert snapshot.current_plan_id == plan.plan_id
    assert snapshot.subscription_expires_at == sub.end_date
    assert snapshot.daily_product_limit == 15
    assert snapshot.max_images_per_product == 6
    assert snapshot.max_variants_per_product == -1


def test_activation_emits_event_after_commit(seeded_plans, store, event_bus):
    seen = []

    def handler(event):
        # The subscription is already visible when the event arrives
        with get_db_session() as session:
            row = session.execute(
                select(store_subscriptions.c.status).where(
                    store_subscriptions.c.subscription_id == event.payload["subscriptionId"]
                )
            ).first()
        seen.append((event, row.status))

    event_bus.subscribe(SUBSCRIPTION_ACTIVATED, handler)
    activate_subscription(store.store_id, seeded_plans["basic"].plan_id, PaymentMethod.MANUAL, "admin-1", now=T0)

    event, status = seen[0]
    assert status == "ACTIVE"
    assert event.payload["storeId"] == store.store_id
    assert event.payload["planName"] == "Basic Plan"
    assert event.payload["endDate"].startswith("2026-03-31")


@pytest.mark.parametrize("second_tier", ["basic", "standard", "premium"])
def test_second_activation_conflicts_for_any_plan(seeded_plans, store, second_tier):
    activate_subscription(store.store_id, seeded_plans["basic"].plan_id, PaymentMethod.MANUAL, "admin-1", now=T0)

    with pytest.raises(ConflictError):
        activate_subscription(
            store.store_id, seeded_plans[second_tier].plan_id, PaymentMethod.ONLINE, "admin-1", now=T0
        )

    with get_db_session() as session:
        rows = session.execute(
            select(store_subscriptions).where(store_subscriptions.c.store_id == store.store_id)
        ).all()
    assert len(rows) == 1


def test_missing_plan(store):
    with pytest.raises(NotFoundError):
        activate_subscription(store.store_id, "00000000-0000-0000-0000-000000000000", PaymentMethod.MANUAL, "admin-1")


def test_missing_store_leaves_no_subscription(seeded_plans):
    with pytest.raises(NotFoundError):
        activate_subscription(
            "00000000-0000-0000-0000-000000000000", seeded_plans["basic"].plan_id, PaymentMethod.MANUAL, "admin-1"
        )
    with get_db_session() as session:
        assert session.execute(select(store_subscriptions)).first() is None


def test_malformed_ids(seeded_plans):
    with pytest.raises(ValidationError):
        activate_subscription("store-1", seeded_plans["basic"].plan_id, PaymentMethod.MANUAL, "admin-1")
