"""
marketplace/features/usage/service.py

Daily usage ledger for store subscriptions.

One ledger row per (subscription, calendar day). "Today" resets naturally:
only the row keyed by the current day in the reference timezone is read.
Rows are never removed.
"""

import logging
import threading
import weakref
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from marketplace.core.config import settings
from marketplace.core.database import (
    get_db_session,
    normalize_now,
    store_subscriptions,
    subscription_daily_usage,
    utc_now,
)
from marketplace.core.errors import NotFoundError, QuotaExceededError
from marketplace.models.plan import UNLIMITED
from marketplace.models.quota import DenyReason, daily_limit_message
from marketplace.models.subscription import DailyUsage


logger = logging.getLogger(__name__)

# Entries drop out once no caller holds the lock
_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def _subscription_lock(subscription_id: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(subscription_id)
        if lock is None:
            lock = _locks[subscription_id] = threading.Lock()
        return lock


def usage_date_for(now: Optional[datetime] = None, tz: Optional[str] = None) -> str:
    """Calendar-day key (YYYY-MM-DD) of `now` in the reference timezone."""
    zone = ZoneInfo(tz or settings.SUBSCRIPTION_TIMEZONE)
    return normalize_now(now).astimezone(zone).strftime("%Y-%m-%d")


def usage_for_day(session, subscription_id: str, usage_date: str) -> int:
    count = session.execute(
        select(subscription_daily_usage.c.products_published)
        .where(subscription_daily_usage.c.subscription_id == subscription_id)
        .where(subscription_daily_usage.c.usage_date == usage_date)
    ).scalar()
    return count or 0


def get_today_usage(subscription_id: str, now: Optional[datetime] = None) -> int:
    """Products published today, or 0 when today has no ledger entry."""
    usage_date = usage_date_for(now)
    with get_db_session() as session:
        return usage_for_day(session, subscription_id, usage_date)


def load_ledgers(session, subscription_ids: Iterable[str]) -> Dict[str, List[DailyUsage]]:
    ids = list(subscription_ids)
    ledgers: Dict[str, List[DailyUsage]] = {sid: [] for sid in ids}
    if not ids:
        return ledgers
    rows = session.execute(
        select(subscription_daily_usage)
        .where(subscription_daily_usage.c.subscription_id.in_(ids))
        .order_by(subscription_daily_usage.c.usage_date)
    ).all()
    for row in rows:
        ledgers[row.subscription_id].append(
            DailyUsage(date=row.usage_date, products_published=row.products_published)
        )
    return ledgers


def get_usage_ledger(subscription_id: str) -> List[DailyUsage]:
    with get_db_session() as session:
        return load_ledgers(session, [subscription_id])[subscription_id]


def _ensure_day_entry(subscription_id: str, usage_date: str, now: datetime) -> None:
    """Create today's ledger row with count 0 if it does not exist yet."""
    try:
        with get_db_session() as session:
            exists = session.execute(
                select(store_subscriptions.c.subscription_id)
                .where(store_subscriptions.c.subscription_id == subscription_id)
            ).first()
            if not exists:
                raise NotFoundError("Subscription not found")

            entry = session.execute(
                select(subscription_daily_usage.c.id)
                .where(subscription_daily_usage.c.subscription_id == subscription_id)
                .where(subscription_daily_usage.c.usage_date == usage_date)
            ).first()
            if entry:
                return
            session.execute(
                insert(subscription_daily_usage).values(
                    subscription_id=subscription_id,
                    usage_date=usage_date,
                    products_published=0,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Another process created the same day row first
        logger.debug("[usage] day entry already created", extra={"subscription_id": subscription_id})


def record_publish(subscription_id: str, now: Optional[datetime] = None, *, limit: Optional[int] = None) -> int:
    """
    Add one unit to today's ledger entry and the running total.

    With `limit`, the increment only happens while today's count is below the
    limit; the guard and the increment are one conditional UPDATE executed
    under a per-subscription lock.

    Returns:
        Today's count after the increment

    Raises:
        NotFoundError: If the subscription does not exist
        QuotaExceededError: If `limit` is given and today's count has reached it
    """
    now = normalize_now(now)
    usage_date = usage_date_for(now)

    with _subscription_lock(subscription_id):
        _ensure_day_entry(subscription_id, usage_date, now)

        with get_db_session() as session:
            stmt = (
                update(subscription_daily_usage)
                .where(subscription_daily_usage.c.subscription_id == subscription_id)
                .where(subscription_daily_usage.c.usage_date == usage_date)
                .values(
                    products_published=subscription_daily_usage.c.products_published + 1,
                    updated_at=utc_now(),
                )
            )
            if limit is not None and limit != UNLIMITED:
                stmt = stmt.where(subscription_daily_usage.c.products_published < limit)

            result = session.execute(stmt)
            if result.rowcount == 0:
                logger.warning(
                    "[usage] daily limit reached on record",
                    extra={"subscription_id": subscription_id, "usage_date": usage_date, "limit": limit},
                )
                raise QuotaExceededError(
                    daily_limit_message(limit),
                    reason=DenyReason.DAILY_LIMIT_REACHED.value,
                    details={"daily_limit": limit},
                )

            session.execute(
                update(store_subscriptions)
                .where(store_subscriptions.c.subscription_id == subscription_id)
                .values(total_products_published=store_subscriptions.c.total_products_published + 1)
            )
            count = usage_for_day(session, subscription_id, usage_date)

    logger.info(
        "[usage] publish recorded",
        extra={"subscription_id": subscription_id, "usage_date": usage_date, "count": count},
    )
    return count
