"""
marketplace/models/quota.py

Publish-gate decision models.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class DenyReason(str, Enum):
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    DAILY_LIMIT_REACHED = "daily_limit_reached"
    IMAGE_LIMIT_EXCEEDED = "image_limit_exceeded"
    VARIANT_LIMIT_EXCEEDED = "variant_limit_exceeded"


EXPIRED_MESSAGE = "Your subscription has expired. Please renew to continue publishing products."
NOT_FOUND_MESSAGE = "No active subscription found. Please subscribe to a plan to continue."


def daily_limit_message(limit: int) -> str:
    return f"Daily product limit reached ({limit} products/day). Please upgrade your plan or wait until tomorrow."


def image_limit_message(limit: int) -> str:
    return f"Image limit exceeded. Your plan allows maximum {limit} images per product."


def variant_limit_message(limit: int) -> str:
    return f"Variant limit exceeded. Your plan allows maximum {limit} variants per product."


class QuotaDecision(BaseModel):
    """Result of a publish-gate evaluation."""
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[DenyReason] = None
    message: Optional[str] = None
    store_id: str
    subscription_id: Optional[str] = None
    today_usage: int = 0
    daily_limit: Optional[int] = None
    max_images: Optional[int] = None
    max_variants: Optional[int] = None
    # True when the subscription system is disabled and the check was skipped
    bypassed: bool = False

    @classmethod
    def allow(cls, store_id: str, **kwargs) -> "QuotaDecision":
        return cls(allowed=True, store_id=store_id, **kwargs)

    @classmethod
    def deny(cls, store_id: str, reason: DenyReason, message: str, **kwargs) -> "QuotaDecision":
        return cls(allowed=False, store_id=store_id, reason=reason, message=message, **kwargs)
