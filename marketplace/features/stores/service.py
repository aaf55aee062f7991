"""
marketplace/features/stores/service.py

Store profile access and the subscription snapshot projection.

The store profile belongs to the store domain; this service only creates
fixtures and writes the snapshot columns. Writers that must stay atomic with
a subscription change take the caller's session.
"""

import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import select, insert, update

from marketplace.core.database import get_db_session, store_profiles, ensure_utc, utc_now
from marketplace.core.errors import NotFoundError
from marketplace.core.validation import new_id, parse_id
from marketplace.models.plan import SubscriptionPlan
from marketplace.models.store import StoreSnapshot


logger = logging.getLogger(__name__)


# Snapshot defaults for a store with no subscription
SNAPSHOT_DEFAULTS = {
    "has_active_subscription": False,
    "current_plan_id": None,
    "subscription_expires_at": None,
    "daily_product_limit": 0,
    "max_images_per_product": 0,
    "max_variants_per_product": 0,
}


def _row_to_snapshot(row) -> StoreSnapshot:
    return StoreSnapshot(
        store_id=row.store_id,
        store_name=row.store_name,
        has_active_subscription=bool(row.has_active_subscription),
        current_plan_id=row.current_plan_id,
        subscription_expires_at=ensure_utc(row.subscription_expires_at),
        daily_product_limit=row.daily_product_limit,
        max_images_per_product=row.max_images_per_product,
        max_variants_per_product=row.max_variants_per_product,
    )


def create_store(store_name: str, owner_id: Optional[str] = None, store_id: Optional[str] = None) -> StoreSnapshot:
    """Create a store profile with an empty snapshot."""
    store_id = parse_id(store_id, "store ID") if store_id else new_id()
    now = utc_now()
    with get_db_session() as session:
        session.execute(
            insert(store_profiles).values(
                store_id=store_id,
                store_name=store_name,
                owner_id=owner_id,
                created_at=now,
                updated_at=now,
                **SNAPSHOT_DEFAULTS,
            )
        )
    logger.info("[stores] store created", extra={"store_id": store_id})
    return get_store_snapshot(store_id)


def load_snapshot(session, store_id: str) -> Optional[StoreSnapshot]:
    row = session.execute(select(store_profiles).where(store_profiles.c.store_id == store_id)).first()
    return _row_to_snapshot(row) if row else None


def get_store_snapshot(store_id: str) -> StoreSnapshot:
    """
    Read the snapshot for a store.

    Raises:
        ValidationError: If store_id is malformed
        NotFoundError: If the store profile does not exist
    """
    store_id = parse_id(store_id, "store ID")
    with get_db_session() as session:
        snapshot = load_snapshot(session, store_id)
    if snapshot is None:
        raise NotFoundError("Store not found")
    return snapshot


def list_store_ids(session) -> list:
    return [row.store_id for row in session.execute(select(store_profiles.c.store_id)).all()]


def apply_plan_snapshot(session, store_id: str, plan: SubscriptionPlan, expires_at: datetime) -> bool:
    """Point the snapshot at an active subscription on `plan`."""
    result = session.execute(
        update(store_profiles)
        .where(store_profiles.c.store_id == store_id)
        .values(
            has_active_subscription=True,
            current_plan_id=plan.plan_id,
            subscription_expires_at=ensure_utc(expires_at),
            daily_product_limit=plan.features.daily_product_limit,
            max_images_per_product=plan.features.max_images_per_product,
            max_variants_per_product=plan.features.max_variants_per_product,
            updated_at=utc_now(),
        )
    )
    return result.rowcount > 0


def reset_snapshot(session, store_id: str) -> bool:
    """Reset to "no subscription" defaults. Returns False when the store is missing."""
    result = session.execute(
        update(store_profiles)
        .where(store_profiles.c.store_id == store_id)
        .values(updated_at=utc_now(), **SNAPSHOT_DEFAULTS)
    )
    return result.rowcount > 0


def set_snapshot_expiry(session, store_id: str, expires_at: datetime) -> bool:
    result = session.execute(
        update(store_profiles)
        .where(store_profiles.c.store_id == store_id)
        .values(subscription_expires_at=ensure_utc(expires_at), updated_at=utc_now())
    )
    return result.rowcount > 0
