"""
marketplace/features/subscriptions/reconcile.py

Snapshot reconciliation.

The store snapshot is a projection of the store's ACTIVE subscription and its
plan. These routines rebuild it from the subscription table and report drift.

Usage:
    from marketplace.features.subscriptions.reconcile import run_reconcile_job
    stats = run_reconcile_job(fix=True)
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from marketplace.core.database import get_db_session
from marketplace.core.errors import NotFoundError
from marketplace.core.validation import parse_id
from marketplace.features.stores.service import (
    apply_plan_snapshot,
    list_store_ids,
    load_snapshot,
    reset_snapshot,
)
from marketplace.features.subscriptions.query import load_active_subscription
from marketplace.models.store import StoreSnapshot


logger = logging.getLogger(__name__)


def expected_snapshot(session, current: StoreSnapshot) -> StoreSnapshot:
    """Snapshot the store should have, derived from its ACTIVE subscription."""
    subscription = load_active_subscription(session, current.store_id)
    if subscription is None or subscription.plan is None:
        return StoreSnapshot(store_id=current.store_id, store_name=current.store_name)
    features = subscription.plan.features
    return StoreSnapshot(
        store_id=current.store_id,
        store_name=current.store_name,
        has_active_subscription=True,
        current_plan_id=subscription.plan_id,
        subscription_expires_at=subscription.end_date,
        daily_product_limit=features.daily_product_limit,
        max_images_per_product=features.max_images_per_product,
        max_variants_per_product=features.max_variants_per_product,
    )


def _rebuild(session, store_id: str, fix: bool) -> Optional[Dict]:
    current = load_snapshot(session, store_id)
    if current is None:
        raise NotFoundError("Store not found")

    expected = expected_snapshot(session, current)
    if current.matches(expected):
        return None

    if fix:
        if expected.has_active_subscription:
            subscription = load_active_subscription(session, store_id)
            apply_plan_snapshot(session, store_id, subscription.plan, subscription.end_date)
        else:
            reset_snapshot(session, store_id)

    return {
        "store_id": store_id,
        "expected_plan_id": expected.current_plan_id,
        "actual_plan_id": current.current_plan_id,
        "expected_active": expected.has_active_subscription,
        "actual_active": current.has_active_subscription,
    }


def reconcile_store_snapshot(store_id: str) -> bool:
    """
    Rebuild one store's snapshot from its ACTIVE subscription, or clear it.

    Returns:
        True if the snapshot was corrected
    """
    store_id = parse_id(store_id, "store ID")
    with get_db_session() as session:
        drift = _rebuild(session, store_id, fix=True)
    if drift:
        logger.warning("[reconcile] snapshot corrected", extra=drift)
    return drift is not None


def run_reconcile_job(now: Optional[datetime] = None, fix: bool = False) -> Dict:
    """
    Scan every store snapshot for drift.

    Args:
        now: Timestamp recorded in the stats
        fix: Correct drift when True (otherwise report only)

    Returns:
        Stats dict with stores_checked, drift_detected, drift_corrected, errors
    """
    if now is None:
        now = datetime.now(timezone.utc)

    stats = {
        "stores_checked": 0,
        "drift_detected": 0,
        "drift_corrected": 0,
        "errors": 0,
        "drifted_store_ids": [],
        "ran_at": now.isoformat(),
    }
    drifted: List[str] = stats["drifted_store_ids"]

    with get_db_session() as session:
        store_ids = list_store_ids(session)

    for store_id in store_ids:
        stats["stores_checked"] += 1
        try:
            with get_db_session() as session:
                drift = _rebuild(session, store_id, fix=fix)
        except Exception:
            stats["errors"] += 1
            logger.error("[reconcile] store failed", exc_info=True, extra={"store_id": store_id})
            continue

        if drift:
            stats["drift_detected"] += 1
            drifted.append(store_id)
            if fix:
                stats["drift_corrected"] += 1
            logger.warning("[reconcile] drift detected", extra={**drift, "fixed": fix})

    logger.info(
        "[reconcile] job complete",
        extra={k: v for k, v in stats.items() if k != "drifted_store_ids"},
    )
    return stats
