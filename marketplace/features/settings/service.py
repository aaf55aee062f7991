"""
marketplace/features/settings/service.py

Subscription system settings (generic settings store, key "subscription").

The stored value keeps the platform-wide shape:
    {"subscriptionSystemEnabled": bool,
     "notificationSettings": {"subscriptionExpiryWarningDays": int}}

Absent settings mean the subscription system is disabled. Callers load the
settings once per operation and pass them into enforcement and sweeps.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, insert, update

from marketplace.core.config import settings as app_settings
from marketplace.core.database import get_db_session, system_settings, utc_now


logger = logging.getLogger(__name__)

SUBSCRIPTION_SETTINGS_KEY = "subscription"


@dataclass(frozen=True)
class SubscriptionSettings:
    enabled: bool
    expiry_warning_days: int


def _default_warning_days() -> int:
    return int(app_settings.SUBSCRIPTION_EXPIRY_WARNING_DAYS)


def _from_value(value: Optional[dict]) -> SubscriptionSettings:
    if not isinstance(value, dict):
        return SubscriptionSettings(enabled=False, expiry_warning_days=_default_warning_days())
    enabled = value.get("subscriptionSystemEnabled") is True
    notification = value.get("notificationSettings") or {}
    days = notification.get("subscriptionExpiryWarningDays")
    # 0 / missing falls back to the configured default
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        days = _default_warning_days()
    return SubscriptionSettings(enabled=enabled, expiry_warning_days=days)


def load_subscription_settings() -> SubscriptionSettings:
    """Read the subscription settings once; absent row => disabled."""
    with get_db_session() as session:
        row = session.execute(
            select(system_settings.c.value).where(system_settings.c.key == SUBSCRIPTION_SETTINGS_KEY)
        ).first()
    return _from_value(row.value if row else None)


def is_subscription_system_enabled() -> bool:
    return load_subscription_settings().enabled


def save_subscription_settings(
    *,
    enabled: Optional[bool] = None,
    expiry_warning_days: Optional[int] = None,
    updated_by: Optional[str] = None,
) -> SubscriptionSettings:
    """Admin write path for the settings store (partial update)."""
    if expiry_warning_days is not None and expiry_warning_days <= 0:
        raise ValueError("expiry_warning_days must be positive")

    with get_db_session() as session:
        row = session.execute(
            select(system_settings.c.value).where(system_settings.c.key == SUBSCRIPTION_SETTINGS_KEY)
        ).first()
        value = dict(row.value) if row and isinstance(row.value, dict) else {}
        if enabled is not None:
            value["subscriptionSystemEnabled"] = bool(enabled)
        if expiry_warning_days is not None:
            notification = dict(value.get("notificationSettings") or {})
            notification["subscriptionExpiryWarningDays"] = int(expiry_warning_days)
            value["notificationSettings"] = notification

        if row:
            session.execute(
                update(system_settings)
                .where(system_settings.c.key == SUBSCRIPTION_SETTINGS_KEY)
                .values(value=value, updated_by=updated_by, updated_at=utc_now())
            )
        else:
            session.execute(
                insert(system_settings).values(
                    key=SUBSCRIPTION_SETTINGS_KEY,
                    value=value,
                    updated_by=updated_by,
                    updated_at=utc_now(),
                )
            )

    result = _from_value(value)
    logger.info(
        "[settings] subscription settings saved",
        extra={"enabled": result.enabled, "expiry_warning_days": result.expiry_warning_days, "updated_by": updated_by},
    )
    return result
