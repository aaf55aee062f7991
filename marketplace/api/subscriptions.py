"""
Store subscription API.

Admin routes (activate, list, update, manual expiry check, reconcile) require
X-Admin-Key. The quota and publish routes are the pre-action gate used by the
product publishing flow.

The admin expiry check accepts a `now` override; the quota and publish routes
always run at server time.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from marketplace.core.admin_auth import AdminActor, require_admin
from marketplace.core.config import settings
from marketplace.features.quota.service import authorize_publish, evaluate_publish_quota
from marketplace.features.settings.service import is_subscription_system_enabled
from marketplace.features.subscriptions.reconcile import reconcile_store_snapshot
from marketplace.features.subscriptions.service import get_subscription_service
from marketplace.models.quota import QuotaDecision
from marketplace.models.subscription import (
    ActivateSubscriptionRequest,
    Page,
    StoreSubscription,
    SubscriptionStatus,
    SubscriptionUpdate,
)

logger = logging.getLogger("marketplace.api.subscriptions")

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class PublishRequest(BaseModel):
    """One product about to be published."""
    image_count: int = Field(default=0, ge=0)
    variant_count: Optional[int] = Field(default=None, ge=0)


class SweepResponse(BaseModel):
    job: str
    skipped: bool
    processed: int
    failed: int
    subscription_ids: List[str]


class ReconcileResponse(BaseModel):
    store_id: str
    corrected: bool


@router.post("", response_model=StoreSubscription, status_code=201)
def activate(req: ActivateSubscriptionRequest, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] activation by {actor.actor_id}: store={req.store_id} plan={req.plan_id}")
    return get_subscription_service().activate(
        req.store_id,
        req.plan_id,
        req.payment_method,
        actor.actor_id,
        amount_paid=req.amount_paid,
        payment_reference=req.payment_reference,
        notes=req.notes,
    )


@router.get("", response_model=Page[StoreSubscription])
def list_subscriptions(
    status: Optional[SubscriptionStatus] = Query(None),
    store_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.SUBSCRIPTION_LIST_PAGE_SIZE, ge=1, le=settings.SUBSCRIPTION_LIST_MAX_PAGE_SIZE),
    actor: AdminActor = Depends(require_admin),
):
    return get_subscription_service().list(status=status, store_id=store_id, page=page, limit=limit)


@router.post("/check-expired", response_model=SweepResponse)
def check_expired(now: Optional[datetime] = Query(None), actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] manual expiration check by {actor.actor_id}")
    return get_subscription_service().check_expired(now).as_dict()


@router.get("/store/{store_id}/active", response_model=Optional[StoreSubscription])
def get_active_for_store(store_id: str):
    return get_subscription_service().get_active_for_store(store_id)


@router.get("/store/{store_id}/quota", response_model=QuotaDecision)
def preview_quota(
    store_id: str,
    image_count: int = Query(0, ge=0),
    variant_count: Optional[int] = Query(None, ge=0),
):
    """Decision preview; never records usage. Always evaluated at server time."""
    return evaluate_publish_quota(
        store_id,
        image_count,
        system_enabled=is_subscription_system_enabled(),
        variant_count=variant_count,
    )


@router.post("/store/{store_id}/publish", response_model=QuotaDecision)
def publish(store_id: str, req: PublishRequest):
    """Gate one product publish and record it. 403 quota_exceeded on deny."""
    return authorize_publish(
        store_id,
        req.image_count,
        system_enabled=is_subscription_system_enabled(),
        variant_count=req.variant_count,
    )


@router.post("/store/{store_id}/reconcile", response_model=ReconcileResponse)
def reconcile(store_id: str, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] snapshot reconcile by {actor.actor_id}: store={store_id}")
    corrected = reconcile_store_snapshot(store_id)
    return ReconcileResponse(store_id=store_id, corrected=corrected)


@router.get("/store/{store_id}", response_model=List[StoreSubscription])
def get_all_for_store(store_id: str):
    return get_subscription_service().get_all_for_store(store_id)


@router.get("/{subscription_id}", response_model=StoreSubscription)
def get_subscription(subscription_id: str):
    return get_subscription_service().get(subscription_id)


@router.patch("/{subscription_id}", response_model=StoreSubscription)
def update_subscription(
    subscription_id: str,
    changes: SubscriptionUpdate,
    actor: AdminActor = Depends(require_admin),
):
    return get_subscription_service().update(subscription_id, changes, actor.actor_id)
