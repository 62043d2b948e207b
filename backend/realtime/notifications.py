"""
Notification helpers for sending WebSocket messages to connected professionals.

Every professional listens on a personal group, professional_<id>; the
"type" of each event names the consumer handler that forwards it.
"""

import logging
from typing import Any, Dict, Optional

from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

OFFER_EVENT = "attribution_offer"
TAKEN_EVENT = "attribution_taken"
CONFIRMED_EVENT = "attribution_confirmed"


class ChannelLayerUnavailable(RuntimeError):
    """Raised when no channel layer is configured."""
    pass


def professional_group_name(professional_id: int) -> str:
    return f"professional_{professional_id}"


def _build_event(event_type: str, professional_id: int, attribution_id: int,
                 message: str = "", extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {
        "type": event_type,
        "attribution_id": attribution_id,
        "professional_id": professional_id,
        **(extra or {}),
    }
    if message:
        payload["message"] = message
    return payload


async def send_professional_event_async(
    event_type: str,
    professional_id: int,
    attribution_id: int,
    message: str = "",
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Send an event to one professional's group.

    Raises:
        ChannelLayerUnavailable: If no channel layer is configured
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        raise ChannelLayerUnavailable("No channel layer configured")

    payload = _build_event(event_type, professional_id, attribution_id, message, extra)
    logger.debug("WS -> professional_%s: %s", professional_id, payload)
    await channel_layer.group_send(professional_group_name(professional_id), payload)
