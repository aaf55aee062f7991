"""
marketplace/features/events/bus.py

In-process publish/subscribe channel for subscription domain events.

The engine hands an event to the bus after the state change has committed.
Delivery is synchronous and fire-and-forget: a failing handler is logged and
never propagates back into the engine.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel, ConfigDict


logger = logging.getLogger("marketplace.events")


SUBSCRIPTION_ACTIVATED = "subscription.activated"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"
SUBSCRIPTION_EXTENDED = "subscription.extended"
SUBSCRIPTION_EXPIRED = "subscription.expired"
SUBSCRIPTION_EXPIRY_WARNING = "subscription.expiryWarning"
SUBSCRIPTION_DAILY_LIMIT_REACHED = "subscription.dailyLimitReached"

EVENT_NAMES = (
    SUBSCRIPTION_ACTIVATED,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXTENDED,
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRY_WARNING,
    SUBSCRIPTION_DAILY_LIMIT_REACHED,
)

# Subscribe to this name to receive every event
ALL_EVENTS = "*"


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    occurred_at: datetime
    payload: Dict[str, Any]


EventHandler = Callable[[DomainEvent], None]


def create_event(name: str, payload: Dict[str, Any], now: Optional[datetime] = None) -> DomainEvent:
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return DomainEvent(name=name, occurred_at=now, payload=payload)


class EventBus:
    """Synchronous in-process event channel."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, name: str, handler: EventHandler) -> None:
        if name != ALL_EVENTS and name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {name}")
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> int:
        """Deliver event to its handlers. Returns number of handlers invoked."""
        with self._lock:
            handlers = list(self._handlers.get(event.name, [])) + list(self._handlers.get(ALL_EVENTS, []))

        logger.info(
            "[events] publish",
            extra={"event_type": event.name, "store_id": event.payload.get("storeId"), "handlers": len(handlers)},
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.error(
                    "[events] handler failed",
                    exc_info=True,
                    extra={"event_type": event.name, "handler": getattr(handler, "__name__", repr(handler))},
                )
        return len(handlers)

    def emit(self, name: str, payload: Dict[str, Any], now: Optional[datetime] = None) -> DomainEvent:
        event = create_event(name, payload, now)
        self.publish(event)
        return event

    def clear(self) -> None:
        """Drop all handlers. FOR TESTING ONLY."""
        with self._lock:
            self._handlers.clear()


_bus = EventBus()


def get_event_bus() -> EventBus:
    return _bus
