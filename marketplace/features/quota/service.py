"""
marketplace/features/quota/service.py

Publish gate for store products.

Decision order:
1. system toggle off -> ALLOW (bypassed)
2. store snapshot missing -> NotFoundError
3. snapshot inactive -> DENY no_active_subscription
4. no ACTIVE subscription row -> DENY subscription_not_found (drift)
5. end date passed -> DENY subscription_expired (sweep not yet run)
6. today's usage >= daily limit -> DENY daily_limit_reached (+ event)
7. images over limit -> DENY image_limit_exceeded
   (variants over limit -> DENY variant_limit_exceeded, when a count is given)
8. ALLOW; resolved subscription and snapshot stored in the request context

Limits of -1 are unlimited. The check is against current usage, not usage
after the request. `authorize_publish` pairs the gate with the guarded
increment so concurrent publishes cannot overshoot the daily limit.
"""

import logging
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from marketplace.core.database import get_db_session, normalize_now
from marketplace.core.errors import NotFoundError, QuotaExceededError
from marketplace.core.validation import parse_id
from marketplace.features.events import SUBSCRIPTION_DAILY_LIMIT_REACHED, EventBus, get_event_bus
from marketplace.features.stores.service import load_snapshot
from marketplace.features.subscriptions.query import load_active_subscription
from marketplace.features.usage.service import record_publish, usage_date_for
from marketplace.models.plan import UNLIMITED
from marketplace.models.quota import (
    EXPIRED_MESSAGE,
    NOT_FOUND_MESSAGE,
    DenyReason,
    QuotaDecision,
    daily_limit_message,
    image_limit_message,
    variant_limit_message,
)
from marketplace.models.store import StoreSnapshot
from marketplace.models.subscription import StoreSubscription


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishContext:
    """Resolved state attached to the current request after an ALLOW."""
    subscription: StoreSubscription
    snapshot: StoreSnapshot


_publish_context: ContextVar[Optional[PublishContext]] = ContextVar("publish_context", default=None)


def get_publish_context() -> Optional[PublishContext]:
    return _publish_context.get()


def clear_publish_context() -> None:
    _publish_context.set(None)


def _over(limit: int, value: int) -> bool:
    return limit != UNLIMITED and value > limit


def evaluate_publish_quota(
    store_id: str,
    image_count: int = 0,
    *,
    system_enabled: bool,
    now: Optional[datetime] = None,
    variant_count: Optional[int] = None,
    event_bus: Optional[EventBus] = None,
) -> QuotaDecision:
    """
    Decide whether the store may publish one product with `image_count` images.

    Raises:
        ValidationError: If store_id is malformed
        NotFoundError: If the store profile does not exist
    """
    store_id = parse_id(store_id, "store ID")
    clear_publish_context()

    if not system_enabled:
        return QuotaDecision.allow(store_id, bypassed=True)

    now = normalize_now(now)

    with get_db_session() as session:
        snapshot = load_snapshot(session, store_id)
        if snapshot is None:
            raise NotFoundError("Store not found")

        if not snapshot.has_active_subscription:
            decision = QuotaDecision.deny(store_id, DenyReason.NO_ACTIVE_SUBSCRIPTION, EXPIRED_MESSAGE)
            _log_decision(decision)
            return decision

        subscription = load_active_subscription(session, store_id)

    if subscription is None:
        decision = QuotaDecision.deny(store_id, DenyReason.SUBSCRIPTION_NOT_FOUND, NOT_FOUND_MESSAGE)
        _log_decision(decision)
        return decision

    common = {
        "subscription_id": subscription.subscription_id,
        "daily_limit": snapshot.daily_product_limit,
        "max_images": snapshot.max_images_per_product,
        "max_variants": snapshot.max_variants_per_product,
    }

    if subscription.end_date < now:
        decision = QuotaDecision.deny(store_id, DenyReason.SUBSCRIPTION_EXPIRED, EXPIRED_MESSAGE, **common)
        _log_decision(decision)
        return decision

    today_usage = subscription.usage_for(usage_date_for(now))
    common["today_usage"] = today_usage
    daily_limit = snapshot.daily_product_limit

    if daily_limit != UNLIMITED and today_usage >= daily_limit:
        decision = QuotaDecision.deny(
            store_id, DenyReason.DAILY_LIMIT_REACHED, daily_limit_message(daily_limit), **common
        )
        _log_decision(decision)
        _emit_daily_limit(store_id, subscription, daily_limit, now, event_bus)
        return decision

    if _over(snapshot.max_images_per_product, image_count):
        decision = QuotaDecision.deny(
            store_id,
            DenyReason.IMAGE_LIMIT_EXCEEDED,
            image_limit_message(snapshot.max_images_per_product),
            **common,
        )
        _log_decision(decision)
        return decision

    if variant_count is not None and _over(snapshot.max_variants_per_product, variant_count):
        decision = QuotaDecision.deny(
            store_id,
            DenyReason.VARIANT_LIMIT_EXCEEDED,
            variant_limit_message(snapshot.max_variants_per_product),
            **common,
        )
        _log_decision(decision)
        return decision

    _publish_context.set(PublishContext(subscription=subscription, snapshot=snapshot))
    decision = QuotaDecision.allow(store_id, **common)
    _log_decision(decision)
    return decision


def enforce_publish_quota(
    store_id: str,
    image_count: int = 0,
    *,
    system_enabled: bool,
    now: Optional[datetime] = None,
    variant_count: Optional[int] = None,
    event_bus: Optional[EventBus] = None,
) -> QuotaDecision:
    """
    Same decision as evaluate_publish_quota, raising on DENY.

    Raises:
        QuotaExceededError: With `reason` set to the DenyReason value
    """
    decision = evaluate_publish_quota(
        store_id,
        image_count,
        system_enabled=system_enabled,
        now=now,
        variant_count=variant_count,
        event_bus=event_bus,
    )
    if not decision.allowed:
        raise _quota_error(decision)
    return decision


def authorize_publish(
    store_id: str,
    image_count: int = 0,
    *,
    system_enabled: bool,
    now: Optional[datetime] = None,
    variant_count: Optional[int] = None,
    event_bus: Optional[EventBus] = None,
) -> QuotaDecision:
    """
    Gate and record one publish.

    The daily-limit guard is re-applied atomically by the increment, so two
    callers that both pass the gate cannot both take the last unit.

    Returns:
        The decision, with today_usage reflecting the recorded publish
    """
    now = normalize_now(now)
    decision = enforce_publish_quota(
        store_id,
        image_count,
        system_enabled=system_enabled,
        now=now,
        variant_count=variant_count,
        event_bus=event_bus,
    )
    if decision.bypassed:
        return decision

    context = get_publish_context()
    subscription = context.subscription
    limit = context.snapshot.daily_product_limit
    try:
        count = record_publish(subscription.subscription_id, now, limit=limit)
    except QuotaExceededError:
        _emit_daily_limit(decision.store_id, subscription, limit, now, event_bus)
        raise

    return decision.model_copy(update={"today_usage": count})


def _quota_error(decision: QuotaDecision) -> QuotaExceededError:
    details = {}
    if decision.reason == DenyReason.DAILY_LIMIT_REACHED:
        details["daily_limit"] = decision.daily_limit
    elif decision.reason == DenyReason.IMAGE_LIMIT_EXCEEDED:
        details["max_images"] = decision.max_images
    elif decision.reason == DenyReason.VARIANT_LIMIT_EXCEEDED:
        details["max_variants"] = decision.max_variants
    return QuotaExceededError(decision.message, reason=decision.reason.value, details=details)


def _emit_daily_limit(store_id, subscription, limit, now, event_bus) -> None:
    bus = event_bus or get_event_bus()
    bus.emit(
        SUBSCRIPTION_DAILY_LIMIT_REACHED,
        {
            "storeId": store_id,
            "subscriptionId": subscription.subscription_id,
            "planName": subscription.plan.name if subscription.plan else None,
            "dailyLimit": limit,
        },
        now=now,
    )


def _log_decision(decision: QuotaDecision) -> None:
    if decision.allowed:
        logger.info(
            "[quota] ALLOW",
            extra={"store_id": decision.store_id, "subscription_id": decision.subscription_id,
                   "today_usage": decision.today_usage, "daily_limit": decision.daily_limit},
        )
    else:
        logger.warning(
            "[quota] DENY",
            extra={"store_id": decision.store_id, "subscription_id": decision.subscription_id,
                   "reason": decision.reason.value, "today_usage": decision.today_usage},
        )
