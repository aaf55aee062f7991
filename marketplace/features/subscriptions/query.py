"""
marketplace/features/subscriptions/query.py

Read side of store subscriptions.
"""

import logging
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import select, func

from marketplace.core.config import settings
from marketplace.core.database import get_db_session, store_subscriptions, subscription_plans, ensure_utc
from marketplace.core.errors import NotFoundError, ValidationError
from marketplace.core.validation import parse_id
from marketplace.features.plans.service import row_to_plan
from marketplace.features.usage.service import load_ledgers
from marketplace.models.subscription import (
    PaymentMethod,
    Page,
    StoreSubscription,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)


def row_to_subscription(row, daily_usage=None, plan=None) -> StoreSubscription:
    return StoreSubscription(
        subscription_id=row.subscription_id,
        store_id=row.store_id,
        plan_id=row.plan_id,
        status=SubscriptionStatus(row.status),
        start_date=ensure_utc(row.start_date),
        end_date=ensure_utc(row.end_date),
        payment_method=PaymentMethod(row.payment_method),
        amount_paid=Decimal(str(row.amount_paid)) if row.amount_paid is not None else None,
        payment_reference=row.payment_reference,
        activated_by=row.activated_by,
        activated_at=ensure_utc(row.activated_at),
        cancelled_by=row.cancelled_by,
        cancelled_at=ensure_utc(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        daily_usage=daily_usage or [],
        total_products_published=row.total_products_published,
        auto_renew=bool(row.auto_renew),
        notes=row.notes,
        created_at=ensure_utc(row.created_at),
        plan=plan,
    )


def _hydrate(session, rows) -> List[StoreSubscription]:
    """Attach ledgers and plans to subscription rows."""
    if not rows:
        return []
    ledgers = load_ledgers(session, [row.subscription_id for row in rows])
    plan_ids = {row.plan_id for row in rows}
    plans = {
        plan_row.plan_id: row_to_plan(plan_row)
        for plan_row in session.execute(
            select(subscription_plans).where(subscription_plans.c.plan_id.in_(plan_ids))
        ).all()
    }
    return [
        row_to_subscription(row, ledgers.get(row.subscription_id), plans.get(row.plan_id))
        for row in rows
    ]


def load_subscription(session, subscription_id: str) -> Optional[StoreSubscription]:
    row = session.execute(
        select(store_subscriptions).where(store_subscriptions.c.subscription_id == subscription_id)
    ).first()
    if not row:
        return None
    return _hydrate(session, [row])[0]


def load_active_subscription(session, store_id: str) -> Optional[StoreSubscription]:
    row = session.execute(
        select(store_subscriptions)
        .where(store_subscriptions.c.store_id == store_id)
        .where(store_subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
        .order_by(store_subscriptions.c.created_at.desc())
    ).first()
    if not row:
        return None
    return _hydrate(session, [row])[0]


def get_subscription(subscription_id: str) -> StoreSubscription:
    """
    Raises:
        ValidationError: If subscription_id is malformed
        NotFoundError: If the subscription does not exist
    """
    subscription_id = parse_id(subscription_id, "subscription ID")
    with get_db_session() as session:
        subscription = load_subscription(session, subscription_id)
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


def get_active_subscription(store_id: str) -> Optional[StoreSubscription]:
    store_id = parse_id(store_id, "store ID")
    with get_db_session() as session:
        return load_active_subscription(session, store_id)


def get_store_subscriptions(store_id: str) -> List[StoreSubscription]:
    """All subscriptions of a store, newest first."""
    store_id = parse_id(store_id, "store ID")
    with get_db_session() as session:
        rows = session.execute(
            select(store_subscriptions)
            .where(store_subscriptions.c.store_id == store_id)
            .order_by(store_subscriptions.c.created_at.desc())
        ).all()
        return _hydrate(session, rows)


def list_subscriptions(
    status: Optional[SubscriptionStatus] = None,
    store_id: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Page[StoreSubscription]:
    if limit is None:
        limit = settings.SUBSCRIPTION_LIST_PAGE_SIZE
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > settings.SUBSCRIPTION_LIST_MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {settings.SUBSCRIPTION_LIST_MAX_PAGE_SIZE}")

    conditions = []
    if status is not None:
        conditions.append(store_subscriptions.c.status == SubscriptionStatus(status).value)
    if store_id is not None:
        conditions.append(store_subscriptions.c.store_id == parse_id(store_id, "store ID"))

    with get_db_session() as session:
        total = session.execute(
            select(func.count()).select_from(store_subscriptions).where(*conditions)
        ).scalar() or 0
        rows = session.execute(
            select(store_subscriptions)
            .where(*conditions)
            .order_by(store_subscriptions.c.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        data = _hydrate(session, rows)

    return Page[StoreSubscription](data=data, total=total, page=page, limit=limit)
