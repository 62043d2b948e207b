"""Base WebSocket consumer with shared functionality for all consumers."""

import logging
from typing import Dict, Any, Set

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from realtime.notifications import professional_group_name

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Subclasses should override:
        - on_connect(): custom connect logic
        - handle_message(msg_type, data): handle incoming messages
    """

    async def connect(self):
        self.professional = self.scope.get("professional")

        if self.professional is None:
            await self.close()
            return

        self.professional_id = self.professional.id

        # Track joined groups for cleanup
        self.joined_groups: Set[str] = set()

        # Personal group (targeted server -> professional messages)
        self.professional_group = professional_group_name(self.professional_id)
        await self._join_group(self.professional_group)

        await self.accept()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_json({
            "type": "connection_established",
            "professional_id": self.professional_id,
        })

    async def disconnect(self, close_code):
        """Leave all joined groups on disconnect."""
        try:
            for group in list(getattr(self, "joined_groups", ())):
                await self._leave_group(group)
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for professional %s", getattr(self, 'professional_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, data: Dict[str, Any]):
        """Route incoming messages to appropriate handlers."""
        msg_type = data.get("type")
        if not msg_type:
            await self.send_error("Message type is required")
            return

        try:
            await self.handle_message(msg_type, data)
        except Exception:
            logger.exception("Error handling message type %s", msg_type)
            await self.send_error(f"Error processing {msg_type}")

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Override in subclass to handle specific message types."""
        await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Group Management Helpers ----------------------

    async def _join_group(self, group_name: str):
        """Join a channel group and track it."""
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        """Leave a channel group and untrack it."""
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "message": message,
        })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })

    # ---------------------- Attribution Event Handlers ----------------------
    # These handle group_send events from realtime.notifications

    async def attribution_offer(self, event):
        """Sent to every eligible professional when a mission is broadcast."""
        await self.send_json({
            "type": "new_mission",
            "attribution_id": event.get("attribution_id"),
            "mission": event.get("mission", {}),
            "distance_km": event.get("distance_km"),
            "accept_url": event.get("accept_url"),
            "refuse_url": event.get("refuse_url"),
            "token": event.get("token"),
        })

    async def attribution_taken(self, event):
        """Sent to the other offered professionals once someone accepted."""
        await self.send_json({
            "type": "mission_taken",
            "attribution_id": event.get("attribution_id"),
            "message": event.get("message", "This mission is no longer available"),
        })

    async def attribution_confirmed(self, event):
        """Sent to the professional whose acceptance won."""
        await self.send_json({
            "type": "mission_confirmed",
            "attribution_id": event.get("attribution_id"),
            "message": event.get("message", "The mission is yours"),
        })
