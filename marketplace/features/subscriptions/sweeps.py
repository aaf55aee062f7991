"""
marketplace/features/subscriptions/sweeps.py

Scheduled batch jobs over store subscriptions.

- Expiration sweep (hourly): ACTIVE subscriptions past their end date move to
  EXPIRED, the store snapshot is reset and `subscription.expired` is emitted.
  Each subscription is handled in its own transaction, guarded by
  status == ACTIVE, so overlapping or repeated runs never double-transition.
- Expiry-warning sweep (daily): read-only; emits `subscription.expiryWarning`
  for every ACTIVE subscription ending within the warning horizon. No dedup.

Both sweeps skip entirely when the subscription system is disabled.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
from sqlalchemy import select, update

from marketplace.core.database import (
    get_db_session,
    store_subscriptions,
    subscription_plans,
    ensure_utc,
    normalize_now,
)
from marketplace.features.events import (
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRY_WARNING,
    EventBus,
    get_event_bus,
)
from marketplace.features.settings.service import load_subscription_settings
from marketplace.features.stores.service import reset_snapshot
from marketplace.features.usage.service import usage_date_for
from marketplace.models.subscription import SubscriptionStatus


logger = logging.getLogger(__name__)

UNKNOWN_PLAN_NAME = "Unknown"


@dataclass
class SweepResult:
    job: str
    skipped: bool = False
    processed: int = 0
    failed: int = 0
    subscription_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "job": self.job,
            "skipped": self.skipped,
            "processed": self.processed,
            "failed": self.failed,
            "subscription_ids": list(self.subscription_ids),
        }


def _plan_name(session, plan_id: str) -> str:
    name = session.execute(
        select(subscription_plans.c.name).where(subscription_plans.c.plan_id == plan_id)
    ).scalar()
    return name or UNKNOWN_PLAN_NAME


def _expire_one(row, now: datetime, bus: EventBus) -> bool:
    """Expire a single subscription. Returns False if another run already did."""
    with get_db_session() as session:
        result = session.execute(
            update(store_subscriptions)
            .where(store_subscriptions.c.subscription_id == row.subscription_id)
            .where(store_subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
        )
        if result.rowcount == 0:
            return False
        store_found = reset_snapshot(session, row.store_id)
        plan_name = _plan_name(session, row.plan_id)

    if not store_found:
        logger.warning(
            "[sweep] store missing for expired subscription",
            extra={"store_id": row.store_id, "subscription_id": row.subscription_id},
        )
    logger.info(
        "[sweep] subscription expired",
        extra={"store_id": row.store_id, "subscription_id": row.subscription_id, "plan_id": row.plan_id},
    )
    bus.emit(
        SUBSCRIPTION_EXPIRED,
        {"storeId": row.store_id, "subscriptionId": row.subscription_id, "planName": plan_name},
        now=now,
    )
    return True


def run_expiration_sweep(
    now: Optional[datetime] = None,
    *,
    system_enabled: Optional[bool] = None,
    event_bus: Optional[EventBus] = None,
) -> SweepResult:
    """
    Expire ACTIVE subscriptions whose end date is at or before `now`.

    Args:
        now: Injected clock (defaults to current UTC time)
        system_enabled: Subscription system toggle; loaded from settings when None
        event_bus: Channel for emitted events (defaults to the process bus)
    """
    now = normalize_now(now)
    bus = event_bus or get_event_bus()
    if system_enabled is None:
        system_enabled = load_subscription_settings().enabled

    result = SweepResult(job="expire")
    if not system_enabled:
        logger.info("[sweep] expiration skipped, subscription system disabled")
        result.skipped = True
        return result

    with get_db_session() as session:
        due = session.execute(
            select(
                store_subscriptions.c.subscription_id,
                store_subscriptions.c.store_id,
                store_subscriptions.c.plan_id,
            )
            .where(store_subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
            .where(store_subscriptions.c.end_date <= now)
            .order_by(store_subscriptions.c.end_date)
        ).all()

    for row in due:
        try:
            if _expire_one(row, now, bus):
                result.processed += 1
                result.subscription_ids.append(row.subscription_id)
        except Exception:
            result.failed += 1
            logger.error(
                "[sweep] failed to expire subscription",
                exc_info=True,
                extra={"store_id": row.store_id, "subscription_id": row.subscription_id},
            )

    logger.info(
        "[sweep] expiration complete",
        extra={"candidates": len(due), "processed": result.processed, "failed": result.failed},
    )
    return result


def run_expiry_warning_sweep(
    now: Optional[datetime] = None,
    *,
    system_enabled: Optional[bool] = None,
    warning_days: Optional[int] = None,
    event_bus: Optional[EventBus] = None,
) -> SweepResult:
    """Emit an expiry warning for each ACTIVE subscription ending within the horizon."""
    now = normalize_now(now)
    bus = event_bus or get_event_bus()
    if system_enabled is None or warning_days is None:
        loaded = load_subscription_settings()
        if system_enabled is None:
            system_enabled = loaded.enabled
        if warning_days is None:
            warning_days = loaded.expiry_warning_days

    result = SweepResult(job="warn")
    if not system_enabled:
        logger.info("[sweep] expiry warning skipped, subscription system disabled")
        result.skipped = True
        return result

    horizon = now + timedelta(days=warning_days)
    with get_db_session() as session:
        rows = session.execute(
            select(
                store_subscriptions.c.subscription_id,
                store_subscriptions.c.store_id,
                store_subscriptions.c.end_date,
                subscription_plans.c.name.label("plan_name"),
            )
            .select_from(
                store_subscriptions.outerjoin(
                    subscription_plans,
                    subscription_plans.c.plan_id == store_subscriptions.c.plan_id,
                )
            )
            .where(store_subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
            .where(store_subscriptions.c.end_date >= now)
            .where(store_subscriptions.c.end_date <= horizon)
            .order_by(store_subscriptions.c.end_date)
        ).all()

    for row in rows:
        try:
            end_date = ensure_utc(row.end_date)
            days_left = math.ceil((end_date - now).total_seconds() / 86400)
            bus.emit(
                SUBSCRIPTION_EXPIRY_WARNING,
                {
                    "storeId": row.store_id,
                    "subscriptionId": row.subscription_id,
                    "planName": row.plan_name or UNKNOWN_PLAN_NAME,
                    "daysLeft": days_left,
                    "expiryDate": usage_date_for(end_date),
                },
                now=now,
            )
            result.processed += 1
            result.subscription_ids.append(row.subscription_id)
        except Exception:
            result.failed += 1
            logger.error(
                "[sweep] failed to warn subscription",
                exc_info=True,
                extra={"store_id": row.store_id, "subscription_id": row.subscription_id},
            )

    logger.info(
        "[sweep] expiry warning complete",
        extra={"warning_days": warning_days, "processed": result.processed, "failed": result.failed},
    )
    return result
