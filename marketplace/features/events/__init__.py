from marketplace.features.events.bus import (
    ALL_EVENTS,
    EVENT_NAMES,
    SUBSCRIPTION_ACTIVATED,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_DAILY_LIMIT_REACHED,
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_EXPIRY_WARNING,
    SUBSCRIPTION_EXTENDED,
    DomainEvent,
    EventBus,
    create_event,
    get_event_bus,
)

__all__ = [
    "ALL_EVENTS",
    "EVENT_NAMES",
    "SUBSCRIPTION_ACTIVATED",
    "SUBSCRIPTION_CANCELLED",
    "SUBSCRIPTION_DAILY_LIMIT_REACHED",
    "SUBSCRIPTION_EXPIRED",
    "SUBSCRIPTION_EXPIRY_WARNING",
    "SUBSCRIPTION_EXTENDED",
    "DomainEvent",
    "EventBus",
    "create_event",
    "get_event_bus",
]
