from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.test import TransactionTestCase

from attribution.tests.factories import make_professional
from common.utils.tokens import make_professional_token
from professionals.models import Professional
from realtime.middleware import ProfessionalTokenAuthMiddleware
from realtime.notifications import OFFER_EVENT, professional_group_name
from realtime.routing import websocket_urlpatterns


class ProfessionalConsumerTests(TransactionTestCase):
	def setUp(self):
		self.application = ProfessionalTokenAuthMiddleware(URLRouter(websocket_urlpatterns))
		self.professional = make_professional("Alpha", 5)

	def _communicator(self, token):
		path = "/ws/professional/"
		if token:
			path += "?token=%s" % token
		return WebsocketCommunicator(self.application, path)

	async def _connect(self):
		communicator = self._communicator(make_professional_token(self.professional.id))
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		welcome = await communicator.receive_json_from()
		self.assertEqual(welcome["type"], "connection_established")
		self.assertEqual(welcome["professional_id"], self.professional.id)
		return communicator

	async def test_connection_without_token_is_closed(self):
		communicator = self._communicator(None)
		connected, _ = await communicator.connect()

		self.assertFalse(connected)

	async def test_connection_with_forged_token_is_closed(self):
		communicator = self._communicator("forged")
		connected, _ = await communicator.connect()

		self.assertFalse(connected)

	async def test_ping(self):
		communicator = await self._connect()

		await communicator.send_json_to({"type": "ping"})
		self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})
		await communicator.disconnect()

	async def test_offer_is_forwarded_from_professional_group(self):
		communicator = await self._connect()

		await get_channel_layer().group_send(professional_group_name(self.professional.id), {
			"type": OFFER_EVENT,
			"attribution_id": 4,
			"professional_id": self.professional.id,
			"mission": {"reference": "EQ-TEST0001"},
			"distance_km": 5.0,
			"token": "signed",
		})

		message = await communicator.receive_json_from()
		self.assertEqual(message["type"], "new_mission")
		self.assertEqual(message["attribution_id"], 4)
		self.assertEqual(message["mission"], {"reference": "EQ-TEST0001"})
		await communicator.disconnect()

	async def test_location_update_is_saved(self):
		communicator = await self._connect()

		await communicator.send_json_to({"type": "location_update", "latitude": 45.764043, "longitude": 4.835659})
		message = await communicator.receive_json_from()
		await communicator.disconnect()

		self.assertEqual(message["type"], "location_updated")
		professional = await database_sync_to_async(Professional.objects.get)(pk=self.professional.id)
		self.assertAlmostEqual(float(professional.latitude), 45.764043, places=6)

	async def test_availability_requires_boolean(self):
		communicator = await self._connect()

		await communicator.send_json_to({"type": "availability_update", "is_available": "no"})
		message = await communicator.receive_json_from()
		await communicator.disconnect()

		self.assertEqual(message["type"], "error")

	async def test_mission_response_with_invalid_token_is_rejected(self):
		communicator = await self._connect()

		await communicator.send_json_to({"type": "accept_mission", "attribution_id": 4, "token": "forged"})
		message = await communicator.receive_json_from()
		await communicator.disconnect()

		self.assertEqual(message, {"type": "error", "message": "Invalid or expired token"})
