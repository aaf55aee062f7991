"""
Subscription system settings API (admin only).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from marketplace.core.admin_auth import AdminActor, require_admin
from marketplace.features.settings.service import load_subscription_settings, save_subscription_settings

logger = logging.getLogger("marketplace.api.settings")

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SubscriptionSettingsResponse(BaseModel):
    enabled: bool
    expiry_warning_days: int


class SubscriptionSettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    expiry_warning_days: Optional[int] = Field(default=None, gt=0)


@router.get("/subscription", response_model=SubscriptionSettingsResponse)
def get_subscription_settings(actor: AdminActor = Depends(require_admin)):
    current = load_subscription_settings()
    return SubscriptionSettingsResponse(enabled=current.enabled, expiry_warning_days=current.expiry_warning_days)


@router.put("/subscription", response_model=SubscriptionSettingsResponse)
def put_subscription_settings(req: SubscriptionSettingsUpdate, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] subscription settings update by {actor.actor_id}")
    saved = save_subscription_settings(
        enabled=req.enabled,
        expiry_warning_days=req.expiry_warning_days,
        updated_by=actor.actor_id,
    )
    return SubscriptionSettingsResponse(enabled=saved.enabled, expiry_warning_days=saved.expiry_warning_days)
