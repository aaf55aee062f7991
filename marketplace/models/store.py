"""
marketplace/models/store.py

Subscription snapshot held on the store profile.

The snapshot is a read-optimized projection of the store's ACTIVE
subscription and its plan limits. Quota enforcement reads only this.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class StoreSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    store_id: str
    store_name: str
    has_active_subscription: bool = False
    current_plan_id: Optional[str] = None
    subscription_expires_at: Optional[datetime] = None
    daily_product_limit: int = 0
    max_images_per_product: int = 0
    max_variants_per_product: int = 0

    def matches(self, other: "StoreSnapshot") -> bool:
        """Compare only the subscription-derived fields."""
        return (
            self.has_active_subscription == other.has_active_subscription
            and self.current_plan_id == other.current_plan_id
            and self.subscription_expires_at == other.subscription_expires_at
            and self.daily_product_limit == other.daily_product_limit
            and self.max_images_per_product == other.max_images_per_product
            and self.max_variants_per_product == other.max_variants_per_product
        )
