"""
marketplace/features/subscriptions/activation.py

Activation: create an ACTIVE subscription for a store and project the plan
limits onto the store snapshot.

The subscription insert and the snapshot write share one transaction.
`subscription.activated` is emitted only after that transaction commits.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy import select, insert

from marketplace.core.database import get_db_session, store_subscriptions, subscription_plans, normalize_now
from marketplace.core.errors import ConflictError, NotFoundError
from marketplace.core.validation import new_id, parse_id
from marketplace.features.events import SUBSCRIPTION_ACTIVATED, EventBus, get_event_bus
from marketplace.features.plans.service import row_to_plan
from marketplace.features.stores.service import apply_plan_snapshot, load_snapshot
from marketplace.features.subscriptions.query import load_subscription
from marketplace.models.subscription import PaymentMethod, StoreSubscription, SubscriptionStatus


logger = logging.getLogger(__name__)


def activate_subscription(
    store_id: str,
    plan_id: str,
    payment_method: PaymentMethod,
    activated_by: str,
    *,
    amount_paid: Optional[Decimal] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    event_bus: Optional[EventBus] = None,
) -> StoreSubscription:
    """
    Activate a plan for a store.

    Raises:
        ValidationError: If an identifier is malformed
        NotFoundError: If the plan or the store does not exist
        ConflictError: If the store already has an ACTIVE subscription
    """
    store_id = parse_id(store_id, "store ID")
    plan_id = parse_id(plan_id, "plan ID")
    payment_method = PaymentMethod(payment_method)
    now = normalize_now(now)
    bus = event_bus or get_event_bus()

    with get_db_session() as session:
        plan_row = session.execute(
            select(subscription_plans).where(subscription_plans.c.plan_id == plan_id)
        ).first()
        if not plan_row:
            raise NotFoundError("Subscription plan not found")
        plan = row_to_plan(plan_row)

        if load_snapshot(session, store_id) is None:
            raise NotFoundError("Store not found")

        existing = session.execute(
            select(store_subscriptions.c.subscription_id)
            .where(store_subscriptions.c.store_id == store_id)
            .where(store_subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
        ).first()
        if existing:
            logger.warning(
                "[activation] store already has an active subscription",
                extra={"store_id": store_id, "subscription_id": existing.subscription_id},
            )
            raise ConflictError(
                "Store already has an active subscription",
                details={"subscription_id": existing.subscription_id},
            )

        subscription_id = new_id()
        end_date = now + timedelta(days=plan.duration_days)
        session.execute(
            insert(store_subscriptions).values(
                subscription_id=subscription_id,
                store_id=store_id,
                plan_id=plan.plan_id,
                status=SubscriptionStatus.ACTIVE.value,
                start_date=now,
                end_date=end_date,
                payment_method=payment_method.value,
                amount_paid=amount_paid,
                payment_reference=payment_reference,
                activated_by=activated_by,
                activated_at=now,
                total_products_published=0,
                auto_renew=False,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
        )
        apply_plan_snapshot(session, store_id, plan, end_date)
        subscription = load_subscription(session, subscription_id)

    logger.info(
        "[activation] subscription activated",
        extra={
            "store_id": store_id,
            "subscription_id": subscription_id,
            "plan_id": plan.plan_id,
            "payment_method": payment_method.value,
            "end_date": end_date.isoformat(),
        },
    )
    bus.emit(
        SUBSCRIPTION_ACTIVATED,
        {
            "storeId": store_id,
            "subscriptionId": subscription_id,
            "planName": plan.name,
            "endDate": end_date.isoformat(),
        },
        now=now,
    )
    return subscription
