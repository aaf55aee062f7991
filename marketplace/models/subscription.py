"""
marketplace/models/subscription.py

Store subscription models.

Constraint: at most one ACTIVE subscription per store. ACTIVE moves to
EXPIRED (sweep) or CANCELLED (admin); neither transition is reversible.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.plan import SubscriptionPlan


class SubscriptionStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    MANUAL = "MANUAL"
    ONLINE = "ONLINE"
    FREE_GRANT = "FREE_GRANT"


class DailyUsage(BaseModel):
    """One ledger entry: products published on a calendar day."""
    model_config = ConfigDict(frozen=True)

    date: str  # YYYY-MM-DD
    products_published: int


class StoreSubscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    store_id: str
    plan_id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    payment_method: PaymentMethod
    amount_paid: Optional[Decimal] = None
    payment_reference: Optional[str] = None
    activated_by: Optional[str] = None
    activated_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    daily_usage: List[DailyUsage] = Field(default_factory=list)
    total_products_published: int = 0
    auto_renew: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    plan: Optional[SubscriptionPlan] = None

    def usage_for(self, usage_date: str) -> int:
        for entry in self.daily_usage:
            if entry.date == usage_date:
                return entry.products_published
        return 0


class ActivateSubscriptionRequest(BaseModel):
    store_id: str
    plan_id: str
    payment_method: PaymentMethod
    amount_paid: Optional[Decimal] = Field(default=None, ge=0)
    payment_reference: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None


class SubscriptionUpdate(BaseModel):
    """Admin changes; each set field is applied independently."""
    status: Optional[SubscriptionStatus] = None
    cancellation_reason: Optional[str] = None
    end_date: Optional[datetime] = None
    auto_renew: Optional[bool] = None
    notes: Optional[str] = None


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    data: List[T]
    total: int
    page: int
    limit: int
