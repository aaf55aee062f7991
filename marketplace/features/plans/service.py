"""
marketplace/features/plans/service.py

Subscription plan catalog service.

Handles:
- Default plan seeding (basic, standard, premium)
- Admin create / update / delete with tier uniqueness among active plans
- Referential hold: a plan referenced by any subscription cannot be deleted
"""

import logging
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import select, insert, update, delete, func

from marketplace.core.database import (
    get_db_session,
    subscription_plans,
    store_subscriptions,
    ensure_utc,
    utc_now,
)
from marketplace.core.errors import ConflictError, NotFoundError
from marketplace.core.validation import new_id, parse_id
from marketplace.models.plan import (
    PlanCreate,
    PlanFeatures,
    PlanTier,
    PlanUpdate,
    SubscriptionPlan,
)


logger = logging.getLogger(__name__)


# Default plan configurations
DEFAULT_PLANS = [
    {
        "name": "Basic Plan",
        "tier": PlanTier.BASIC,
        "price_usd": Decimal("20"),
        "price_syp": Decimal("300000"),
        "duration_days": 30,
        "display_order": 1,
        "features": {
            "daily_product_limit": 2,
            "max_images_per_product": 2,
            "max_variants_per_product": 5,
            "priority_support": False,
            "analytics_access": False,
            "custom_domain": False,
        },
    },
    {
        "name": "Standard Plan",
        "tier": PlanTier.STANDARD,
        "price_usd": Decimal("50"),
        "price_syp": Decimal("750000"),
        "duration_days": 30,
        "display_order": 2,
        "features": {
            "daily_product_limit": 5,
            "max_images_per_product": 4,
            "max_variants_per_product": -1,  # unlimited
            "priority_support": False,
            "analytics_access": True,
            "custom_domain": False,
        },
    },
    {
        "name": "Premium Plan",
        "tier": PlanTier.PREMIUM,
        "price_usd": Decimal("100"),
        "price_syp": Decimal("1500000"),
        "duration_days": 30,
        "display_order": 3,
        "features": {
            "daily_product_limit": 15,
            "max_images_per_product": 6,
            "max_variants_per_product": -1,  # unlimited
            "priority_support": True,
            "analytics_access": True,
            "custom_domain": True,
        },
    },
]


def row_to_plan(row) -> SubscriptionPlan:
    return SubscriptionPlan(
        plan_id=row.plan_id,
        name=row.name,
        tier=PlanTier(row.tier),
        price_usd=Decimal(str(row.price_usd)),
        price_syp=Decimal(str(row.price_syp)),
        duration_days=row.duration_days,
        features=PlanFeatures(
            daily_product_limit=row.daily_product_limit,
            max_images_per_product=row.max_images_per_product,
            max_variants_per_product=row.max_variants_per_product,
            priority_support=bool(row.priority_support),
            analytics_access=bool(row.analytics_access),
            custom_domain=bool(row.custom_domain),
        ),
        is_active=bool(row.is_active),
        display_order=row.display_order,
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _feature_columns(features: PlanFeatures) -> dict:
    return {
        "daily_product_limit": features.daily_product_limit,
        "max_images_per_product": features.max_images_per_product,
        "max_variants_per_product": features.max_variants_per_product,
        "priority_support": features.priority_support,
        "analytics_access": features.analytics_access,
        "custom_domain": features.custom_domain,
    }


def _active_tier_holder(session, tier: PlanTier, exclude_plan_id: Optional[str] = None):
    query = (
        select(subscription_plans.c.plan_id)
        .where(subscription_plans.c.tier == tier.value)
        .where(subscription_plans.c.is_active == True)  # noqa: E712
    )
    if exclude_plan_id:
        query = query.where(subscription_plans.c.plan_id != exclude_plan_id)
    return session.execute(query).first()


def seed_default_plans() -> int:
    """
    Seed default plans when the catalog is empty (idempotent).

    Returns:
        Number of plans inserted (0 when any plan already exists)
    """
    now = utc_now()
    with get_db_session() as session:
        existing = session.execute(select(func.count()).select_from(subscription_plans)).scalar() or 0
        if existing:
            return 0

        for config in DEFAULT_PLANS:
            features = PlanFeatures(**config["features"])
            session.execute(
                insert(subscription_plans).values(
                    plan_id=new_id(),
                    name=config["name"],
                    tier=config["tier"].value,
                    price_usd=config["price_usd"],
                    price_syp=config["price_syp"],
                    duration_days=config["duration_days"],
                    is_active=True,
                    display_order=config["display_order"],
                    created_at=now,
                    updated_at=now,
                    **_feature_columns(features),
                )
            )

    logger.info("[plans] default plans seeded", extra={"count": len(DEFAULT_PLANS)})
    return len(DEFAULT_PLANS)


def create_plan(data: PlanCreate) -> SubscriptionPlan:
    """
    Create a catalog entry.

    Raises:
        ConflictError: If an active plan already holds the tier
    """
    plan_id = new_id()
    now = utc_now()
    with get_db_session() as session:
        if data.is_active and _active_tier_holder(session, data.tier):
            raise ConflictError(f"An active plan with tier '{data.tier.value}' already exists")

        session.execute(
            insert(subscription_plans).values(
                plan_id=plan_id,
                name=data.name,
                tier=data.tier.value,
                price_usd=data.price_usd,
                price_syp=data.price_syp,
                duration_days=data.duration_days,
                is_active=data.is_active,
                display_order=data.display_order,
                created_at=now,
                updated_at=now,
                **_feature_columns(data.features),
            )
        )

    logger.info("[plans] plan created", extra={"plan_id": plan_id, "tier": data.tier.value})
    return get_plan(plan_id)


def get_plan(plan_id: str) -> SubscriptionPlan:
    """
    Get plan by ID.

    Raises:
        ValidationError: If plan_id is malformed
        NotFoundError: If the plan does not exist
    """
    plan_id = parse_id(plan_id, "plan ID")
    plan = find_plan(plan_id)
    if plan is None:
        raise NotFoundError("Subscription plan not found")
    return plan


def find_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    """Lookup without raising; dangling references resolve to None."""
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(subscription_plans.c.plan_id == plan_id)
        ).first()
        return row_to_plan(row) if row else None


def get_plan_by_tier(tier: PlanTier) -> SubscriptionPlan:
    tier = PlanTier(tier)
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans)
            .where(subscription_plans.c.tier == tier.value)
            .where(subscription_plans.c.is_active == True)  # noqa: E712
        ).first()
        if not row:
            raise NotFoundError(f"No active plan for tier '{tier.value}'")
        return row_to_plan(row)


def list_plans(active_only: bool = False) -> List[SubscriptionPlan]:
    with get_db_session() as session:
        query = select(subscription_plans)
        if active_only:
            query = query.where(subscription_plans.c.is_active == True)  # noqa: E712
        rows = session.execute(
            query.order_by(subscription_plans.c.display_order, subscription_plans.c.name)
        ).all()
        return [row_to_plan(row) for row in rows]


def update_plan(plan_id: str, changes: PlanUpdate) -> SubscriptionPlan:
    """
    Apply a partial update.

    Raises:
        ConflictError: If the resulting tier is already held by another active plan
    """
    current = get_plan(plan_id)
    values = changes.model_dump(exclude_unset=True, exclude_none=True)
    if not values:
        return current

    features = values.pop("features", None)
    if features is not None:
        values.update(_feature_columns(changes.features))
    if "tier" in values:
        values["tier"] = changes.tier.value

    new_tier = changes.tier or current.tier
    new_active = changes.is_active if changes.is_active is not None else current.is_active

    with get_db_session() as session:
        if new_active and (new_tier != current.tier or not current.is_active):
            if _active_tier_holder(session, new_tier, exclude_plan_id=current.plan_id):
                raise ConflictError(f"An active plan with tier '{new_tier.value}' already exists")

        values["updated_at"] = utc_now()
        session.execute(
            update(subscription_plans)
            .where(subscription_plans.c.plan_id == current.plan_id)
            .values(**values)
        )

    logger.info("[plans] plan updated", extra={"plan_id": current.plan_id, "fields": sorted(values)})
    return get_plan(current.plan_id)


def delete_plan(plan_id: str) -> None:
    """
    Delete a plan that no subscription references.

    Raises:
        ConflictError: If any subscription (in any status) references the plan
    """
    plan = get_plan(plan_id)
    with get_db_session() as session:
        references = session.execute(
            select(func.count())
            .select_from(store_subscriptions)
            .where(store_subscriptions.c.plan_id == plan.plan_id)
        ).scalar() or 0
        if references:
            raise ConflictError(
                f"Plan is referenced by {references} subscription(s); deactivate it instead",
                details={"references": references},
            )
        session.execute(delete(subscription_plans).where(subscription_plans.c.plan_id == plan.plan_id))

    logger.info("[plans] plan deleted", extra={"plan_id": plan.plan_id})
