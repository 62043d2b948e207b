"""
Outbound notifications to professionals (offer fan-out, taken/confirmed events).
"""

from .dispatcher import (
    BroadcastReport,
    ChannelsNotificationDispatcher,
    DeliveryOutcome,
    NotificationDispatcher,
)

__all__ = [
    "BroadcastReport",
    "ChannelsNotificationDispatcher",
    "DeliveryOutcome",
    "NotificationDispatcher",
]
