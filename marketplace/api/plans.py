"""
Subscription plan catalog API.

Reads are public; writes require X-Admin-Key.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Response

from marketplace.core.admin_auth import AdminActor, require_admin
from marketplace.features.plans import service as plans
from marketplace.models.plan import PlanCreate, PlanUpdate, SubscriptionPlan

logger = logging.getLogger("marketplace.api.plans")

router = APIRouter(prefix="/api/subscription-plans", tags=["subscription-plans"])


@router.get("", response_model=List[SubscriptionPlan])
def list_plans(active_only: bool = Query(False)):
    return plans.list_plans(active_only=active_only)


@router.post("/seed")
def seed_plans(actor: AdminActor = Depends(require_admin)):
    inserted = plans.seed_default_plans()
    logger.info(f"[admin] plan seed requested by {actor.actor_id}: inserted={inserted}")
    return {"inserted": inserted}


@router.get("/{plan_id}", response_model=SubscriptionPlan)
def get_plan(plan_id: str):
    return plans.get_plan(plan_id)


@router.post("", response_model=SubscriptionPlan, status_code=201)
def create_plan(data: PlanCreate, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] plan create by {actor.actor_id}: tier={data.tier.value}")
    return plans.create_plan(data)


@router.patch("/{plan_id}", response_model=SubscriptionPlan)
def update_plan(plan_id: str, changes: PlanUpdate, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] plan update by {actor.actor_id}: {plan_id}")
    return plans.update_plan(plan_id, changes)


@router.delete("/{plan_id}", status_code=204)
def delete_plan(plan_id: str, actor: AdminActor = Depends(require_admin)):
    logger.info(f"[admin] plan delete by {actor.actor_id}: {plan_id}")
    plans.delete_plan(plan_id)
    return Response(status_code=204)
