"""
marketplace/features/subscriptions/service.py

SubscriptionService: one entry point over activation, management and query.

Built by composition; each collaborator is a plain module (or any object
exposing the same functions) and can be swapped in tests.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from marketplace.features.events import EventBus, get_event_bus
from marketplace.features.subscriptions import activation as default_activation
from marketplace.features.subscriptions import management as default_management
from marketplace.features.subscriptions import query as default_query
from marketplace.features.subscriptions.sweeps import SweepResult
from marketplace.models.subscription import (
    PaymentMethod,
    Page,
    StoreSubscription,
    SubscriptionStatus,
    SubscriptionUpdate,
)


class SubscriptionService:
    def __init__(self, activation=None, management=None, query=None, event_bus: Optional[EventBus] = None):
        self.activation = activation or default_activation
        self.management = management or default_management
        self.query = query or default_query
        self.event_bus = event_bus or get_event_bus()

    def activate(
        self,
        store_id: str,
        plan_id: str,
        payment_method: PaymentMethod,
        activated_by: str,
        *,
        amount_paid: Optional[Decimal] = None,
        payment_reference: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StoreSubscription:
        return self.activation.activate_subscription(
            store_id,
            plan_id,
            payment_method,
            activated_by,
            amount_paid=amount_paid,
            payment_reference=payment_reference,
            notes=notes,
            now=now,
            event_bus=self.event_bus,
        )

    def update(
        self,
        subscription_id: str,
        changes: SubscriptionUpdate,
        actor_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> StoreSubscription:
        return self.management.update_subscription(
            subscription_id, changes, actor_id, now=now, event_bus=self.event_bus
        )

    def cancel(self, subscription_id: str, actor_id: str, reason: Optional[str] = None, *, now=None) -> StoreSubscription:
        changes = SubscriptionUpdate(status=SubscriptionStatus.CANCELLED, cancellation_reason=reason)
        return self.update(subscription_id, changes, actor_id, now=now)

    def check_expired(self, now: Optional[datetime] = None) -> SweepResult:
        return self.management.check_expired_subscriptions(now, event_bus=self.event_bus)

    def get(self, subscription_id: str) -> StoreSubscription:
        return self.query.get_subscription(subscription_id)

    def get_active_for_store(self, store_id: str) -> Optional[StoreSubscription]:
        return self.query.get_active_subscription(store_id)

    def get_all_for_store(self, store_id: str) -> List[StoreSubscription]:
        return self.query.get_store_subscriptions(store_id)

    def list(
        self,
        status: Optional[SubscriptionStatus] = None,
        store_id: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[StoreSubscription]:
        return self.query.list_subscriptions(status=status, store_id=store_id, page=page, limit=limit)


_service: Optional[SubscriptionService] = None


def get_subscription_service() -> SubscriptionService:
    global _service
    if _service is None:
        _service = SubscriptionService()
    return _service
