"""
marketplace/features/notifications/listener.py

Turns subscription events into store-owner notification requests.

Delivery (push/email/SMS) is external; the listener resolves the store,
builds a NotificationRequest from the event and hands it to a sender.
The default sender only logs.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from marketplace.core.database import get_db_session, store_profiles
from marketplace.features.events import (
    SUBSCRIPTION_ACTIVATED,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_DAILY_LIMIT_REACHED,
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRY_WARNING,
    SUBSCRIPTION_EXTENDED,
    DomainEvent,
    EventBus,
)
from marketplace.features.stores.service import load_snapshot


logger = logging.getLogger(__name__)


class NotificationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    template_code: str
    recipient_id: Optional[str]
    store_id: str
    channels: Tuple[str, ...]
    variables: Dict[str, str]


NotificationSender = Callable[[NotificationRequest], None]


# event name -> (template code, channels)
TEMPLATES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    SUBSCRIPTION_ACTIVATED: ("SUBSCRIPTION_ACTIVATED", ("in_app", "email")),
    SUBSCRIPTION_EXPIRED: ("SUBSCRIPTION_EXPIRED", ("in_app", "email", "sms")),
    SUBSCRIPTION_EXPIRY_WARNING: ("SUBSCRIPTION_EXPIRY_WARNING", ("in_app", "email", "sms")),
    SUBSCRIPTION_DAILY_LIMIT_REACHED: ("DAILY_LIMIT_REACHED", ("in_app",)),
}

# Logged only, no notification
AUDIT_ONLY = (SUBSCRIPTION_CANCELLED, SUBSCRIPTION_EXTENDED)


def log_sender(request: NotificationRequest) -> None:
    logger.info(
        "[notifications] send",
        extra={
            "store_id": request.store_id,
            "template_code": request.template_code,
            "channels": list(request.channels),
        },
    )


def _variables(event: DomainEvent, store_name: str, daily_limit: int) -> Dict[str, str]:
    payload = event.payload
    plan_name = payload.get("planName") or "Unknown"
    if event.name == SUBSCRIPTION_ACTIVATED:
        return {
            "storeName": store_name,
            "planName": plan_name,
            "dailyLimit": str(daily_limit),
            "expiryDate": payload["endDate"][:10],
        }
    if event.name == SUBSCRIPTION_EXPIRED:
        return {"storeName": store_name, "planName": plan_name}
    if event.name == SUBSCRIPTION_EXPIRY_WARNING:
        return {
            "storeName": store_name,
            "planName": plan_name,
            "daysLeft": str(payload["daysLeft"]),
            "expiryDate": payload["expiryDate"],
        }
    return {
        "dailyLimit": str(payload.get("dailyLimit")),
        "planName": payload.get("planName") or "Current Plan",
    }


class SubscriptionNotificationListener:
    """Subscribes to subscription events and forwards notification requests."""

    def __init__(self, sender: Optional[NotificationSender] = None):
        self.sender = sender or log_sender

    def register(self, bus: EventBus) -> "SubscriptionNotificationListener":
        for name in list(TEMPLATES) + list(AUDIT_ONLY):
            bus.subscribe(name, self.handle)
        return self

    def unregister(self, bus: EventBus) -> None:
        for name in list(TEMPLATES) + list(AUDIT_ONLY):
            bus.unsubscribe(name, self.handle)

    def build_request(self, event: DomainEvent) -> Optional[NotificationRequest]:
        store_id = event.payload.get("storeId")
        if event.name not in TEMPLATES or not store_id:
            return None

        with get_db_session() as session:
            store = load_snapshot(session, store_id)
            owner_id = session.execute(
                select(store_profiles.c.owner_id).where(store_profiles.c.store_id == store_id)
            ).scalar()
        if store is None:
            logger.warning("[notifications] store not found", extra={"store_id": store_id, "event_type": event.name})
            return None

        template_code, channels = TEMPLATES[event.name]
        return NotificationRequest(
            template_code=template_code,
            recipient_id=owner_id,
            store_id=store_id,
            channels=channels,
            variables=_variables(event, store.store_name, store.daily_product_limit),
        )

    def handle(self, event: DomainEvent) -> None:
        if event.name in AUDIT_ONLY:
            logger.info(
                "[notifications] subscription change",
                extra={"event_type": event.name, "store_id": event.payload.get("storeId")},
            )
            return
        request = self.build_request(event)
        if request is not None:
            self.sender(request)


class RecordingSender:
    """Sender that keeps every request in memory."""

    def __init__(self):
        self.sent: List[NotificationRequest] = []

    def __call__(self, request: NotificationRequest) -> None:
        self.sent.append(request)


def register_notification_listener(bus: EventBus, sender: Optional[NotificationSender] = None) -> SubscriptionNotificationListener:
    return SubscriptionNotificationListener(sender).register(bus)
