"""
marketplace/models/plan.py

Subscription plan catalog models.

A plan is a paid tier (basic, standard, premium) with a duration and a
feature bundle. Numeric limits use -1 for unlimited.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


UNLIMITED = -1


class PlanTier(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class PlanFeatures(BaseModel):
    """Feature bundle copied onto the store snapshot at activation."""
    model_config = ConfigDict(frozen=True)

    daily_product_limit: int = Field(ge=UNLIMITED)
    max_images_per_product: int = Field(ge=UNLIMITED)
    max_variants_per_product: int = Field(ge=UNLIMITED)
    priority_support: bool = False
    analytics_access: bool = False
    custom_domain: bool = False


class SubscriptionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    tier: PlanTier
    price_usd: Decimal
    price_syp: Decimal
    duration_days: int
    features: PlanFeatures
    is_active: bool = True
    display_order: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlanCreate(BaseModel):
    """Admin payload for a new catalog entry."""
    name: str = Field(min_length=1, max_length=200)
    tier: PlanTier
    price_usd: Decimal = Field(default=Decimal("0"), ge=0)
    price_syp: Decimal = Field(default=Decimal("0"), ge=0)
    duration_days: int = Field(gt=0)
    features: PlanFeatures
    is_active: bool = True
    display_order: int = 0


class PlanUpdate(BaseModel):
    """Partial update; only fields that are set are applied."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    tier: Optional[PlanTier] = None
    price_usd: Optional[Decimal] = Field(default=None, ge=0)
    price_syp: Optional[Decimal] = Field(default=None, ge=0)
    duration_days: Optional[int] = Field(default=None, gt=0)
    features: Optional[PlanFeatures] = None
    is_active: Optional[bool] = None
    display_order: Optional[int] = None
