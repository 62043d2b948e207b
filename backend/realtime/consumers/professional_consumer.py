"""Professional WebSocket consumer for mission offers and live responses."""

import logging
from typing import Dict, Any

from channels.db import database_sync_to_async

from .base import BaseConsumer
from common.utils.tokens import verify_response_token

logger = logging.getLogger(__name__)


class ProfessionalConsumer(BaseConsumer):
    """
    WebSocket consumer for professionals.

    Handles:
        - Mission offers, taken and confirmed events (see BaseConsumer)
        - Accepting or refusing a mission without leaving the app
        - Location and availability updates
    """

    async def on_connect(self):
        await self.send_json({
            "type": "connection_established",
            "professional_id": self.professional_id,
            "company_name": self.professional.company_name,
            "message": "Professional connected successfully",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle professional-specific messages."""

        if msg_type == "accept_mission":
            await self._handle_response(data, "handle_accept")
        elif msg_type == "refuse_mission":
            await self._handle_response(data, "handle_refuse")
        elif msg_type == "location_update":
            await self._handle_location_update(data)
        elif msg_type == "availability_update":
            await self._handle_availability_update(data)
        elif msg_type == "ping":
            await self.send_success("pong")
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_response(self, data: Dict[str, Any], handler_name: str):
        attribution_id = data.get("attribution_id")
        token = data.get("token")

        if attribution_id is None or not token:
            await self.send_error("attribution_id and token are required")
            return
        try:
            attribution_id = int(attribution_id)
        except (TypeError, ValueError):
            await self.send_error("attribution_id must be an integer")
            return

        if not verify_response_token(token, attribution_id, self.professional_id):
            await self.send_error("Invalid or expired token")
            return

        result = await self._run_coordinator(handler_name, attribution_id, data.get("reason"))
        await self.send_json({
            "type": "mission_response",
            "attribution_id": attribution_id,
            "success": result.success,
            "error": result.error_code,
            "message": result.message,
        })

    @database_sync_to_async
    def _run_coordinator(self, handler_name: str, attribution_id: int, reason=None):
        from services.attribution import AttributionCoordinator, call_with_single_retry

        coordinator = AttributionCoordinator()
        if handler_name == "handle_refuse":
            return call_with_single_retry(coordinator.handle_refuse, attribution_id, self.professional_id, reason)
        return call_with_single_retry(coordinator.handle_accept, attribution_id, self.professional_id)

    async def _handle_location_update(self, data: Dict[str, Any]):
        lat = data.get("latitude")
        lon = data.get("longitude")

        if lat is None or lon is None:
            await self.send_error("location_update requires latitude and longitude")
            return

        try:
            lat = float(lat)
            lon = float(lon)
        except (TypeError, ValueError):
            await self.send_error("latitude and longitude must be numbers")
            return
        if not (-90 <= lat <= 90 and -180 <= lon <= 180):
            await self.send_error("Coordinates out of range")
            return

        await self._update_location_db(lat, lon)
        await self.send_success("location_updated", latitude=lat, longitude=lon)

    async def _handle_availability_update(self, data: Dict[str, Any]):
        is_available = data.get("is_available")
        if not isinstance(is_available, bool):
            await self.send_error("availability_update requires a boolean is_available")
            return

        await self._update_availability_db(is_available)
        await self.send_success("availability_updated", is_available=is_available)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _update_location_db(self, lat: float, lon: float):
        from professionals.services import update_professional_coordinates
        update_professional_coordinates(self.professional, round(lat, 6), round(lon, 6))

    @database_sync_to_async
    def _update_availability_db(self, is_available: bool):
        from professionals.services import set_professional_availability
        set_professional_availability(self.professional, is_available)
