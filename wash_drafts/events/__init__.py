"""Event fan-out."""

from .bus import (
    EVENT_CONTENT_UPDATED,
    EVENT_HISTORY_UPDATED,
    EVENT_IMAGES_CACHED,
    EVENT_SETTINGS_UPDATED,
    BroadcastBus,
    BusEvent,
    Subscription,
)

__all__ = [
    "BroadcastBus",
    "BusEvent",
    "EVENT_CONTENT_UPDATED",
    "EVENT_HISTORY_UPDATED",
    "EVENT_IMAGES_CACHED",
    "EVENT_SETTINGS_UPDATED",
    "Subscription",
]
