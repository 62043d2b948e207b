from datetime import timedelta
from io import StringIO
from unittest.mock import AsyncMock, Mock, patch

from asgiref.sync import async_to_sync
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from attribution.maintenance import cleanup_old_data, expire_stale_attributions
from attribution.models import Attribution, AttributionOffer, AttributionResponse, AttributionStatus
from attribution.tasks import expire_stale_attributions_task, start_attribution_task
from common.utils.tokens import verify_response_token
from realtime.notifications import (
	OFFER_EVENT,
	ChannelLayerUnavailable,
	professional_group_name,
	send_professional_event_async,
)
from services.exceptions import DataUnavailableError
from services.matching import EligibleProfessional
from services.notifications import ChannelsNotificationDispatcher
from .factories import TARGET_LAT, TARGET_LON, fail_once, make_booking, make_coordinator, make_professional


class ExpireStaleAttributionsTests(TestCase):
	def setUp(self):
		self.professional = make_professional("Alpha", 5)
		self.coordinator = make_coordinator()

	def _start_at(self, minutes_ago):
		attribution_id = self.coordinator.start(make_booking().id, "MOVING", TARGET_LAT, TARGET_LON, 50)
		Attribution.objects.filter(pk=attribution_id).update(
			last_broadcast_at=timezone.now() - timedelta(minutes=minutes_ago)
		)
		return attribution_id

	def test_only_stale_open_attributions_expire(self):
		stale_id = self._start_at(300)
		fresh_id = self._start_at(10)
		accepted_id = self._start_at(300)
		self.coordinator.handle_accept(accepted_id, self.professional.id)

		expired = expire_stale_attributions(minutes=240, coordinator=self.coordinator)

		self.assertEqual(expired, [stale_id])
		self.assertEqual(Attribution.objects.get(pk=stale_id).status, AttributionStatus.EXPIRED)
		self.assertEqual(Attribution.objects.get(pk=fresh_id).status, AttributionStatus.BROADCASTING)
		self.assertEqual(Attribution.objects.get(pk=accepted_id).status, AttributionStatus.ACCEPTED)

	def test_management_command(self):
		stale_id = self._start_at(120)
		out = StringIO()

		with patch('services.attribution.AttributionCoordinator', return_value=self.coordinator):
			call_command('expire_stale_attributions', '--minutes', '60', stdout=out)

		self.assertIn(str(stale_id), out.getvalue())
		self.assertEqual(Attribution.objects.get(pk=stale_id).status, AttributionStatus.EXPIRED)

	def test_management_command_without_stale_attributions(self):
		out = StringIO()

		call_command('expire_stale_attributions', stdout=out)

		self.assertIn("No stale attributions", out.getvalue())

	def test_periodic_task_returns_count(self):
		self._start_at(500)
		self._start_at(500)

		with patch('services.attribution.AttributionCoordinator', return_value=self.coordinator):
			self.assertEqual(expire_stale_attributions_task(minutes=240), 2)


class StartAttributionTaskTests(TestCase):
	def test_task_starts_attribution(self):
		booking = make_booking()
		make_professional("Alpha", 5)
		coordinator = make_coordinator()

		with patch('services.attribution.AttributionCoordinator', return_value=coordinator):
			attribution_id = start_attribution_task(booking.id, "MOVING", TARGET_LAT, TARGET_LON, 50)

		self.assertEqual(Attribution.objects.get(pk=attribution_id).status, AttributionStatus.BROADCASTING)

	def test_task_retry_reuses_the_attribution_it_created(self):
		booking = make_booking()
		make_professional("Alpha", 5)
		coordinator = make_coordinator()
		flaky = fail_once(coordinator._record_offers, DataUnavailableError("offers lost"))

		with patch('services.attribution.AttributionCoordinator', return_value=coordinator):
			with patch.object(coordinator, '_record_offers', side_effect=flaky):
				attribution_id = start_attribution_task(booking.id, "MOVING", TARGET_LAT, TARGET_LON, 50)

		attributions = Attribution.objects.filter(booking=booking)
		self.assertEqual(list(attributions.values_list('id', flat=True)), [attribution_id])
		self.assertEqual(AttributionOffer.objects.filter(attribution_id=attribution_id).count(), 1)
		self.assertEqual(len(flaky.calls), 2)

	def test_task_ignores_unknown_booking(self):
		with patch('services.attribution.AttributionCoordinator', return_value=make_coordinator()):
			self.assertIsNone(start_attribution_task(999999, "MOVING", TARGET_LAT, TARGET_LON, 50))
		self.assertFalse(Attribution.objects.exists())


class CleanupOldDataTests(TestCase):
	def setUp(self):
		self.booking = make_booking()
		self.pro_a = make_professional("Alpha", 5)
		self.pro_b = make_professional("Bravo", 10)
		self.coordinator = make_coordinator()
		old = timezone.now() - timedelta(days=45)

		self.expired_id = self.coordinator.start(self.booking.id, "MOVING", TARGET_LAT, TARGET_LON, 50)
		self.coordinator.handle_refuse(self.expired_id, self.pro_a.id)
		self.coordinator.expire(self.expired_id)

		self.open_id = self.coordinator.start(self.booking.id, "MOVING", TARGET_LAT, TARGET_LON, 50)
		self.coordinator.handle_refuse(self.open_id, self.pro_b.id)

		AttributionOffer.objects.update(sent_at=old)
		AttributionResponse.objects.update(responded_at=old)

	def test_dry_run_counts_without_deleting(self):
		counts = cleanup_old_data(days=30, dry_run=True)

		self.assertEqual(counts, {"offers": 2, "responses": 1})
		self.assertEqual(AttributionOffer.objects.count(), 4)
		self.assertEqual(AttributionResponse.objects.count(), 2)

	def test_cleanup_keeps_open_attributions(self):
		cleanup_old_data(days=30)

		self.assertFalse(AttributionOffer.objects.filter(attribution_id=self.expired_id).exists())
		self.assertEqual(AttributionOffer.objects.filter(attribution_id=self.open_id).count(), 2)
		self.assertEqual(list(AttributionResponse.objects.values_list('attribution_id', flat=True)), [self.open_id])

	def test_recent_records_are_kept(self):
		self.assertEqual(cleanup_old_data(days=60), {"offers": 0, "responses": 0})

	def test_management_command(self):
		out = StringIO()

		call_command('cleanup_old_data', '--days', '30', '--dry-run', stdout=out)

		self.assertIn("DRY RUN", out.getvalue())
		self.assertEqual(AttributionOffer.objects.count(), 4)


def _candidate(professional_id, distance_km=5.0):
	return EligibleProfessional(
		id=professional_id,
		company_name=f"Pro {professional_id}",
		email=f"pro{professional_id}@example.com",
		phone="0600000000",
		latitude=TARGET_LAT,
		longitude=TARGET_LON,
		distance_km=distance_km,
		city="Paris",
		address="",
	)


class ChannelsNotificationDispatcherTests(TestCase):
	def setUp(self):
		self.dispatcher = ChannelsNotificationDispatcher()

	def test_broadcast_sends_signed_offer_to_each_candidate(self):
		summary = Mock()
		summary.as_dict.return_value = {"reference": "EQ-TEST0001"}

		with patch('services.notifications.dispatcher.send_professional_event_async', new_callable=AsyncMock) as send:
			report = self.dispatcher.broadcast(7, [_candidate(1, 2.5), _candidate(2, 8.0)], summary)

		self.assertEqual([outcome.professional_id for outcome in report.delivered], [1, 2])
		self.assertEqual(send.await_count, 2)

		event_type, professional_id, attribution_id = send.call_args_list[0].args
		extra = send.call_args_list[0].kwargs["extra"]
		self.assertEqual((event_type, professional_id, attribution_id), (OFFER_EVENT, 1, 7))
		self.assertEqual(extra["mission"], {"reference": "EQ-TEST0001"})
		self.assertEqual(extra["distance_km"], 2.5)
		self.assertTrue(verify_response_token(extra["token"], 7, 1))
		self.assertIn("/api/attribution/7/accept/", extra["accept_url"])

	def test_one_failed_delivery_does_not_block_the_others(self):
		async def flaky(event_type, professional_id, attribution_id, **kwargs):
			if professional_id == 2:
				raise ConnectionError("redis timeout")

		with patch('services.notifications.dispatcher.send_professional_event_async', side_effect=flaky):
			report = self.dispatcher.broadcast(7, [_candidate(1), _candidate(2), _candidate(3)], None)

		self.assertEqual([outcome.professional_id for outcome in report.delivered], [1, 3])
		self.assertEqual(len(report.failed), 1)
		self.assertEqual(report.failed[0].error, "redis timeout")
		with self.assertRaises(Exception) as ctx:
			report.raise_for_failures()
		self.assertIn("1 of 3 notifications failed", str(ctx.exception))

	def test_notify_taken_confirms_winner_and_informs_others(self):
		with patch('services.notifications.dispatcher.send_professional_event_async', new_callable=AsyncMock) as send:
			report = self.dispatcher.notify_taken(7, 2, {1, 2, 3})

		sent = [(call.args[0], call.args[1]) for call in send.call_args_list]
		self.assertEqual(sent, [
			("attribution_confirmed", 2),
			("attribution_taken", 1),
			("attribution_taken", 3),
		])
		self.assertEqual(len(report.delivered), 3)


class ProfessionalNotificationTests(TestCase):
	def test_event_is_sent_to_professional_group(self):
		layer = Mock()
		layer.group_send = AsyncMock()

		with patch('realtime.notifications.get_channel_layer', return_value=layer):
			async_to_sync(send_professional_event_async)("attribution_taken", 5, 9, message="Taken")

		group, payload = layer.group_send.await_args.args
		self.assertEqual(group, professional_group_name(5))
		self.assertEqual(payload, {
			"type": "attribution_taken",
			"attribution_id": 9,
			"professional_id": 5,
			"message": "Taken",
		})

	def test_missing_channel_layer(self):
		with patch('realtime.notifications.get_channel_layer', return_value=None):
			with self.assertRaises(ChannelLayerUnavailable):
				async_to_sync(send_professional_event_async)("attribution_taken", 5, 9)
