"""
marketplace/features/subscriptions/management.py

Admin changes to an existing subscription.

Each field in SubscriptionUpdate is applied independently:
- status=CANCELLED: transition plus snapshot reset, one transaction
- end_date: extend or shorten; the snapshot expiry is mirrored only while
  the subscription is ACTIVE
- auto_renew / notes: plain assignment

Events are emitted after the transaction commits.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import select, update

from marketplace.core.database import get_db_session, store_subscriptions, subscription_plans, ensure_utc, normalize_now
from marketplace.core.errors import ConflictError, NotFoundError, ValidationError
from marketplace.core.validation import parse_id
from marketplace.features.events import (
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXTENDED,
    EventBus,
    get_event_bus,
)
from marketplace.features.stores.service import reset_snapshot, set_snapshot_expiry
from marketplace.features.subscriptions.query import load_subscription
from marketplace.features.subscriptions.sweeps import SweepResult, run_expiration_sweep
from marketplace.models.subscription import StoreSubscription, SubscriptionStatus, SubscriptionUpdate


logger = logging.getLogger(__name__)


def update_subscription(
    subscription_id: str,
    changes: SubscriptionUpdate,
    actor_id: str,
    *,
    now: Optional[datetime] = None,
    event_bus: Optional[EventBus] = None,
) -> StoreSubscription:
    """
    Apply admin changes to a subscription.

    Raises:
        ValidationError: If the id is malformed, the status change is not a
            cancellation, or end_date precedes start_date
        NotFoundError: If the subscription does not exist
        ConflictError: If the status changed between read and write
    """
    subscription_id = parse_id(subscription_id, "subscription ID")
    now = normalize_now(now)
    bus = event_bus or get_event_bus()

    if changes.status is not None and changes.status != SubscriptionStatus.CANCELLED:
        raise ValidationError(
            "Only cancellation is supported as a status change",
            details={"status": changes.status.value},
        )

    pending_events: List[Tuple[str, Dict[str, Any]]] = []

    with get_db_session() as session:
        row = session.execute(
            select(store_subscriptions).where(store_subscriptions.c.subscription_id == subscription_id)
        ).first()
        if not row:
            raise NotFoundError("Subscription not found")

        if changes.end_date is not None and ensure_utc(changes.end_date) < ensure_utc(row.start_date):
            raise ValidationError(
                "end_date must not precede start_date",
                details={"start_date": ensure_utc(row.start_date).isoformat()},
            )

        status = SubscriptionStatus(row.status)
        plan_name = session.execute(
            select(subscription_plans.c.name).where(subscription_plans.c.plan_id == row.plan_id)
        ).scalar()
        values: Dict[str, Any] = {}

        if changes.status == SubscriptionStatus.CANCELLED and status != SubscriptionStatus.CANCELLED:
            if status != SubscriptionStatus.ACTIVE and status != SubscriptionStatus.PENDING_PAYMENT:
                raise ValidationError(f"Cannot cancel a subscription in status {status.value}")
            values.update(
                status=SubscriptionStatus.CANCELLED.value,
                cancelled_by=actor_id,
                cancelled_at=now,
                cancellation_reason=changes.cancellation_reason,
            )
            if status == SubscriptionStatus.ACTIVE:
                if not reset_snapshot(session, row.store_id):
                    logger.warning(
                        "[management] store missing on cancellation",
                        extra={"store_id": row.store_id, "subscription_id": subscription_id},
                    )
            pending_events.append((
                SUBSCRIPTION_CANCELLED,
                {
                    "storeId": row.store_id,
                    "subscriptionId": subscription_id,
                    "planName": plan_name,
                    "reason": changes.cancellation_reason,
                },
            ))
            status = SubscriptionStatus.CANCELLED

        if changes.end_date is not None:
            new_end = ensure_utc(changes.end_date)
            values["end_date"] = new_end
            if status == SubscriptionStatus.ACTIVE:
                set_snapshot_expiry(session, row.store_id, new_end)
                pending_events.append((
                    SUBSCRIPTION_EXTENDED,
                    {
                        "storeId": row.store_id,
                        "subscriptionId": subscription_id,
                        "planName": plan_name,
                        "newEndDate": new_end.isoformat(),
                    },
                ))

        if changes.auto_renew is not None:
            values["auto_renew"] = changes.auto_renew
        if changes.notes is not None:
            values["notes"] = changes.notes

        if values:
            values["updated_at"] = now
            # Conditional on the status read above
            result = session.execute(
                update(store_subscriptions)
                .where(store_subscriptions.c.subscription_id == subscription_id)
                .where(store_subscriptions.c.status == row.status)
                .values(**values)
            )
            if result.rowcount == 0:
                logger.warning(
                    "[management] subscription changed concurrently",
                    extra={"store_id": row.store_id, "subscription_id": subscription_id},
                )
                raise ConflictError(
                    "Subscription was modified concurrently; retry the update",
                    details={"subscription_id": subscription_id},
                )
        subscription = load_subscription(session, subscription_id)

    logger.info(
        "[management] subscription updated",
        extra={
            "store_id": subscription.store_id,
            "subscription_id": subscription_id,
            "actor_id": actor_id,
            "fields": sorted(k for k in values if k != "updated_at"),
        },
    )
    for name, payload in pending_events:
        bus.emit(name, payload, now=now)
    return subscription


def check_expired_subscriptions(
    now: Optional[datetime] = None,
    *,
    event_bus: Optional[EventBus] = None,
) -> SweepResult:
    """Run the expiration sweep on demand. Ignores the system toggle."""
    logger.info("[management] manual expiration check requested")
    return run_expiration_sweep(now, system_enabled=True, event_bus=event_bus)
