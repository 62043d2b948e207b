import threading
from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError, IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature
from django.utils import timezone

from attribution.models import (
	Attribution,
	AttributionOffer,
	AttributionResponse,
	AttributionStatus,
	PenaltyRecord,
)
from bookings.models import Booking
from services.attribution import build_booking_summary, call_with_single_retry
from services.exceptions import (
	AttributionNotFoundError,
	BookingNotFoundError,
	DataUnavailableError,
)
from .factories import (
	TARGET_LAT,
	TARGET_LON,
	RecordingDispatcher,
	fail_once,
	make_booking,
	make_coordinator,
	make_professional,
)


class AttributionTestMixin:
	def setUp(self):
		self.booking = make_booking()
		self.pro_a = make_professional("Alpha", 5)
		self.pro_b = make_professional("Bravo", 20)
		self.pro_c = make_professional("Charlie", 40)
		self.dispatcher = RecordingDispatcher()
		self.coordinator = make_coordinator(self.dispatcher)

	def start(self, radius=100, booking=None):
		booking = booking or self.booking
		return self.coordinator.start(booking.id, "MOVING", TARGET_LAT, TARGET_LON, radius)

	def assertAcceptedInvariant(self):
		for attribution in Attribution.objects.all():
			self.assertEqual(
				attribution.accepted_professional_id is not None,
				attribution.status == AttributionStatus.ACCEPTED,
				f"invariant broken on attribution {attribution.id}",
			)


class StartAttributionTests(AttributionTestMixin, TestCase):
	def test_start_broadcasts_to_eligible_professionals_nearest_first(self):
		attribution_id = self.start()

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.BROADCASTING)
		self.assertEqual(attribution.broadcast_count, 1)
		self.assertIsNotNone(attribution.last_broadcast_at)

		self.assertEqual(len(self.dispatcher.broadcasts), 1)
		_, ids, summary = self.dispatcher.broadcasts[0]
		self.assertEqual(ids, [self.pro_a.id, self.pro_b.id, self.pro_c.id])
		self.assertEqual(summary.booking_id, self.booking.id)

		offers = AttributionOffer.objects.filter(attribution=attribution)
		self.assertEqual(offers.count(), 3)
		self.assertTrue(all(offer.status == 'sent' for offer in offers))

	def test_start_without_candidates_expires_immediately(self):
		attribution_id = self.coordinator.start(self.booking.id, "CLEANING", TARGET_LAT, TARGET_LON, 100)

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.EXPIRED)
		self.assertIsNotNone(attribution.expired_at)
		self.assertEqual(self.dispatcher.broadcasts, [])

	def test_start_skips_blacklisted_professionals(self):
		self.coordinator.ledger.record_cancellation_after_acceptance(self.pro_a.id, "MOVING")

		self.start()

		_, ids, _ = self.dispatcher.broadcasts[0]
		self.assertEqual(ids, [self.pro_b.id, self.pro_c.id])

	def test_blacklist_in_other_category_does_not_exclude(self):
		self.coordinator.ledger.record_cancellation_after_acceptance(self.pro_a.id, "CLEANING")

		self.start()

		_, ids, _ = self.dispatcher.broadcasts[0]
		self.assertIn(self.pro_a.id, ids)

	def test_start_normalizes_legacy_category(self):
		attribution_id = self.coordinator.start(self.booking.id, "demenagement", TARGET_LAT, TARGET_LON, 100)
		self.assertEqual(Attribution.objects.get(pk=attribution_id).category, "MOVING")

	def test_start_unknown_booking_raises(self):
		with self.assertRaises(BookingNotFoundError):
			self.coordinator.start(999999, "MOVING", TARGET_LAT, TARGET_LON, 100)
		self.assertEqual(Attribution.objects.count(), 0)

	def test_start_rejects_non_positive_radius(self):
		with self.assertRaises(ValueError):
			self.start(radius=0)

	def test_partial_delivery_failure_is_logged_without_rollback(self):
		dispatcher = RecordingDispatcher(fail_for={self.pro_b.id})
		coordinator = make_coordinator(dispatcher)

		with self.assertLogs("services.attribution.coordinator", level="WARNING") as logs:
			attribution_id = coordinator.start(self.booking.id, "MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertTrue(any("notifications failed" in line for line in logs.output))
		self.assertEqual(Attribution.objects.get(pk=attribution_id).status, AttributionStatus.BROADCASTING)
		failed = AttributionOffer.objects.get(attribution_id=attribution_id, professional=self.pro_b)
		self.assertEqual(failed.status, 'failed')
		self.assertEqual(failed.error, 'unreachable')

	def test_dispatcher_crash_keeps_attribution_broadcasting(self):
		with patch.object(RecordingDispatcher, "broadcast", side_effect=RuntimeError("smtp down")):
			attribution_id = self.start()

		self.assertEqual(Attribution.objects.get(pk=attribution_id).status, AttributionStatus.BROADCASTING)
		self.assertEqual(
			AttributionOffer.objects.filter(attribution_id=attribution_id, status='failed').count(), 3
		)

	def test_second_start_returns_the_active_attribution(self):
		first_id = self.start()
		self.coordinator.handle_accept(first_id, self.pro_a.id)

		second_id = self.start()

		self.assertEqual(second_id, first_id)
		self.assertEqual(len(self.dispatcher.broadcasts), 1)
		self.assertEqual(Attribution.objects.filter(booking=self.booking).count(), 1)

	def test_expired_attribution_does_not_block_a_new_start(self):
		first_id = self.start()
		self.coordinator.expire(first_id)

		second_id = self.start()

		self.assertNotEqual(second_id, first_id)
		self.assertEqual(Attribution.objects.get(pk=second_id).status, AttributionStatus.BROADCASTING)
		self.assertEqual(len(self.dispatcher.broadcasts), 2)

	def test_database_rejects_second_active_attribution(self):
		self.start()

		with self.assertRaises(IntegrityError):
			with transaction.atomic():
				Attribution.objects.create(
					booking=self.booking,
					category="MOVING",
					latitude=TARGET_LAT,
					longitude=TARGET_LON,
				)


class AcceptRefuseScenarioTests(AttributionTestMixin, TestCase):
	def test_refuse_then_accept(self):
		attribution_id = self.start()

		refused = self.coordinator.handle_refuse(attribution_id, self.pro_a.id, "Fully booked")
		accepted = self.coordinator.handle_accept(attribution_id, self.pro_b.id)

		self.assertTrue(refused.success)
		self.assertTrue(accepted.success)

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.ACCEPTED)
		self.assertEqual(attribution.accepted_professional_id, self.pro_b.id)
		self.assertIsNotNone(attribution.accepted_at)

		responses = AttributionResponse.objects.filter(attribution=attribution)
		self.assertEqual(responses.count(), 2)
		self.assertEqual(
			responses.get(response_type=AttributionResponse.ResponseType.REFUSED).professional_id,
			self.pro_a.id,
		)
		refusal = responses.get(professional=self.pro_a)
		self.assertEqual(refusal.reason, "Fully booked")
		self.assertEqual(
			responses.get(response_type=AttributionResponse.ResponseType.ACCEPTED).professional_id,
			self.pro_b.id,
		)

		record = PenaltyRecord.objects.get(professional=self.pro_a, category="MOVING")
		self.assertEqual(record.consecutive_refusals, 1)
		self.assertFalse(record.blacklisted)

		self.booking.refresh_from_db()
		self.assertEqual(self.booking.professional_id, self.pro_b.id)
		self.assertAcceptedInvariant()

	def test_accept_notifies_everyone_who_received_the_offer(self):
		attribution_id = self.start()

		self.coordinator.handle_accept(attribution_id, self.pro_c.id)

		self.assertEqual(len(self.dispatcher.taken), 1)
		taken_id, winner_id, recipients = self.dispatcher.taken[0]
		self.assertEqual(taken_id, attribution_id)
		self.assertEqual(winner_id, self.pro_c.id)
		self.assertEqual(recipients, {self.pro_a.id, self.pro_b.id, self.pro_c.id})

	def test_taken_notification_failure_does_not_undo_acceptance(self):
		attribution_id = self.start()

		with patch.object(RecordingDispatcher, "notify_taken", side_effect=RuntimeError("layer down")):
			result = self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		self.assertTrue(result.success)
		self.assertEqual(Attribution.objects.get(pk=attribution_id).accepted_professional_id, self.pro_a.id)

	def test_acceptance_resets_penalty_counters(self):
		ledger = self.coordinator.ledger
		ledger.record_refusal(self.pro_b.id, "MOVING")
		attribution_id = self.start()

		self.coordinator.handle_accept(attribution_id, self.pro_b.id)

		record = PenaltyRecord.objects.get(professional=self.pro_b, category="MOVING")
		self.assertEqual(record.consecutive_refusals, 0)
		self.assertEqual(record.total_refusals, 1)

	def test_refusal_keeps_broadcasting_without_new_round(self):
		attribution_id = self.start()

		result = self.coordinator.handle_refuse(attribution_id, self.pro_a.id)

		self.assertTrue(result.success)
		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.BROADCASTING)
		self.assertEqual(attribution.broadcast_count, 1)
		self.assertEqual(len(self.dispatcher.broadcasts), 1)
		self.assertEqual(attribution.excluded_professional_ids, [self.pro_a.id])

	def test_repeated_refusal_is_stale_and_not_penalised_twice(self):
		attribution_id = self.start()
		self.coordinator.handle_refuse(attribution_id, self.pro_a.id)

		again = self.coordinator.handle_refuse(attribution_id, self.pro_a.id)

		self.assertFalse(again.success)
		self.assertEqual(again.error_code, "invalid_transition")
		record = PenaltyRecord.objects.get(professional=self.pro_a, category="MOVING")
		self.assertEqual(record.consecutive_refusals, 1)
		self.assertEqual(AttributionResponse.objects.filter(professional=self.pro_a).count(), 1)

	def test_exclusion_set_grows_by_one_per_refusal(self):
		pro_d = make_professional("Delta", 60)
		attribution_id = self.start()

		for professional in (self.pro_a, self.pro_b, pro_d, self.pro_a):
			self.coordinator.handle_refuse(attribution_id, professional.id)

		excluded = Attribution.objects.get(pk=attribution_id).excluded_professional_ids
		self.assertEqual(excluded, [self.pro_a.id, self.pro_b.id, pro_d.id])
		self.assertEqual(len(set(excluded)), len(excluded))

	def test_refused_professional_cannot_accept(self):
		attribution_id = self.start()
		self.coordinator.handle_refuse(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "invalid_transition")

	def test_refuse_after_acceptance_is_stale(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_refuse(attribution_id, self.pro_b.id)

		self.assertFalse(result.success)
		self.assertEqual(result.message, "This mission is no longer available")
		self.assertFalse(PenaltyRecord.objects.filter(professional=self.pro_b).exists())

	def test_unknown_ids_return_not_found_results(self):
		attribution_id = self.start()

		missing_attribution = self.coordinator.handle_accept(999999, self.pro_a.id)
		missing_professional = self.coordinator.handle_accept(attribution_id, 999999)
		missing_refuse = self.coordinator.handle_refuse(999999, self.pro_a.id)

		for result in (missing_attribution, missing_professional, missing_refuse):
			self.assertFalse(result.success)
			self.assertEqual(result.error_code, "not_found")


class AcceptRaceTests(AttributionTestMixin, TestCase):
	def test_second_acceptance_loses_the_race(self):
		attribution_id = self.start()

		first = self.coordinator.handle_accept(attribution_id, self.pro_a.id)
		second = self.coordinator.handle_accept(attribution_id, self.pro_b.id)

		self.assertTrue(first.success)
		self.assertFalse(second.success)
		self.assertEqual(second.error_code, "race_lost")
		self.assertEqual(second.message, "This mission is no longer available")

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.accepted_professional_id, self.pro_a.id)
		self.assertEqual(
			AttributionResponse.objects.filter(response_type=AttributionResponse.ResponseType.ACCEPTED).count(), 1
		)
		self.assertAcceptedInvariant()

	def test_competing_acceptance_committed_mid_request_wins(self):
		"""Another professional's acceptance lands after this request started."""
		attribution_id = self.start()
		coordinator = self.coordinator
		original = coordinator._require_professional
		pro_a_id = self.pro_a.id

		def competing_accept(professional_id):
			original(professional_id)
			Attribution.objects.filter(pk=attribution_id).update(
				status=AttributionStatus.ACCEPTED,
				accepted_professional_id=pro_a_id,
			)

		with patch.object(coordinator, "_require_professional", side_effect=competing_accept):
			result = coordinator.handle_accept(attribution_id, self.pro_b.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "race_lost")
		self.assertEqual(Attribution.objects.get(pk=attribution_id).accepted_professional_id, pro_a_id)
		self.assertFalse(AttributionResponse.objects.filter(professional=self.pro_b).exists())

	def test_double_click_by_winner_is_stale(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "invalid_transition")

	def test_accept_on_expired_attribution_is_stale(self):
		attribution_id = self.start()
		self.coordinator.expire(attribution_id)

		result = self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "invalid_transition")
		self.assertAcceptedInvariant()

	def test_database_rejects_accepted_status_without_professional(self):
		attribution_id = self.start()

		with self.assertRaises(IntegrityError):
			with transaction.atomic():
				Attribution.objects.filter(pk=attribution_id).update(status=AttributionStatus.ACCEPTED)

	def test_store_failure_during_accept_propagates(self):
		attribution_id = self.start()

		with patch.object(Attribution.objects, "using", side_effect=DatabaseError("connection lost")):
			with self.assertRaises(DataUnavailableError):
				self.coordinator.handle_accept(attribution_id, self.pro_a.id)

	def test_accept_never_overwrites_an_assigned_booking(self):
		attribution_id = self.start()
		Booking.objects.filter(pk=self.booking.pk).update(professional=self.pro_c)

		result = self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "race_lost")
		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.BROADCASTING)
		self.assertIsNone(attribution.accepted_professional_id)
		self.booking.refresh_from_db()
		self.assertEqual(self.booking.professional_id, self.pro_c.id)
		self.assertFalse(AttributionResponse.objects.filter(professional=self.pro_a).exists())


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentAcceptTests(TransactionTestCase):
	def test_simultaneous_acceptances_have_exactly_one_winner(self):
		booking = make_booking()
		professionals = [make_professional("Alpha", 5), make_professional("Bravo", 20)]
		attribution_id = make_coordinator().start(booking.id, "MOVING", TARGET_LAT, TARGET_LON, 100)
		barrier = threading.Barrier(len(professionals))
		results = {}

		def accept(professional):
			coordinator = make_coordinator()
			barrier.wait()
			try:
				results[professional.id] = coordinator.handle_accept(attribution_id, professional.id)
			finally:
				connection.close()

		threads = [threading.Thread(target=accept, args=(professional,)) for professional in professionals]
		for thread in threads:
			thread.start()
		for thread in threads:
			thread.join()

		winners = [pid for pid, result in results.items() if result.success]
		losers = [result for result in results.values() if not result.success]
		self.assertEqual(len(winners), 1)
		self.assertEqual([result.error_code for result in losers], ["race_lost"])

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.accepted_professional_id, winners[0])
		booking.refresh_from_db()
		self.assertEqual(booking.professional_id, winners[0])
		self.assertEqual(
			AttributionResponse.objects.filter(response_type=AttributionResponse.ResponseType.ACCEPTED).count(), 1
		)


class CancelAfterAcceptTests(AttributionTestMixin, TestCase):
	def test_cancel_rebroadcasts_without_the_canceller(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id, "Truck broke down")

		self.assertTrue(result.success)
		self.assertEqual(result.extra, {"candidates": 2})

		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.RE_BROADCASTING)
		self.assertIsNone(attribution.accepted_professional_id)
		self.assertEqual(attribution.broadcast_count, 2)
		self.assertIn(self.pro_a.id, attribution.excluded_professional_ids)

		record = PenaltyRecord.objects.get(professional=self.pro_a, category="MOVING")
		self.assertTrue(record.blacklisted)
		self.assertGreaterEqual(record.consecutive_refusals, 2)

		self.assertEqual(len(self.dispatcher.broadcasts), 2)
		_, ids, _ = self.dispatcher.broadcasts[1]
		self.assertEqual(ids, [self.pro_b.id, self.pro_c.id])
		self.assertEqual(
			AttributionOffer.objects.filter(attribution=attribution, broadcast_round=2).count(), 2
		)

		self.booking.refresh_from_db()
		self.assertIsNone(self.booking.professional_id)
		cancellation = AttributionResponse.objects.get(response_type=AttributionResponse.ResponseType.CANCELLED)
		self.assertEqual(cancellation.reason, "Truck broke down")
		self.assertAcceptedInvariant()

	def test_rebroadcast_attribution_can_be_accepted_again(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)
		self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_accept(attribution_id, self.pro_c.id)

		self.assertTrue(result.success)
		self.assertEqual(Attribution.objects.get(pk=attribution_id).accepted_professional_id, self.pro_c.id)
		self.booking.refresh_from_db()
		self.assertEqual(self.booking.professional_id, self.pro_c.id)

	def test_rebroadcast_without_candidates_expires(self):
		attribution_id = self.start(radius=10)
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id)

		self.assertTrue(result.success)
		self.assertEqual(result.extra, {"candidates": 0})
		self.assertEqual(Attribution.objects.get(pk=attribution_id).status, AttributionStatus.EXPIRED)

	def test_only_the_accepted_professional_can_cancel(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		result = self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_b.id)

		self.assertFalse(result.success)
		self.assertEqual(result.error_code, "invalid_transition")
		self.assertEqual(Attribution.objects.get(pk=attribution_id).status, AttributionStatus.ACCEPTED)

	def test_cancel_before_acceptance_is_stale(self):
		attribution_id = self.start()

		result = self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id)

		self.assertFalse(result.success)
		self.assertFalse(PenaltyRecord.objects.exists())


class StoreFailureAfterCommitTests(AttributionTestMixin, TestCase):
	"""Failures after the attribution transaction committed, retried the way the request layer does."""

	def test_start_retried_after_offer_bookkeeping_failure_keeps_one_attribution(self):
		flaky = fail_once(self.coordinator._record_offers, DataUnavailableError("offers lost"))

		with patch.object(self.coordinator, "_record_offers", side_effect=flaky):
			attribution_id = call_with_single_retry(
				self.coordinator.start, self.booking.id, "MOVING", TARGET_LAT, TARGET_LON, 100
			)

		attributions = Attribution.objects.filter(booking=self.booking)
		self.assertEqual(list(attributions.values_list("id", flat=True)), [attribution_id])
		self.assertEqual(attributions.get().broadcast_count, 1)
		self.assertEqual(len(self.dispatcher.broadcasts), 2)
		self.assertEqual(AttributionOffer.objects.filter(attribution_id=attribution_id).count(), 3)

		first = self.coordinator.handle_accept(attribution_id, self.pro_a.id)
		second = self.coordinator.handle_accept(attribution_id, self.pro_b.id)

		self.assertTrue(first.success)
		self.assertFalse(second.success)
		self.assertEqual(second.error_code, "race_lost")
		self.booking.refresh_from_db()
		self.assertEqual(self.booking.professional_id, self.pro_a.id)

	def test_start_retried_after_blacklist_lookup_failure(self):
		ledger = self.coordinator.ledger
		flaky = fail_once(ledger.get_blacklisted, DataUnavailableError("ledger down"))

		with patch.object(ledger, "get_blacklisted", side_effect=flaky):
			attribution_id = call_with_single_retry(
				self.coordinator.start, self.booking.id, "MOVING", TARGET_LAT, TARGET_LON, 100
			)

		self.assertEqual(Attribution.objects.filter(booking=self.booking).count(), 1)
		self.assertEqual(len(self.dispatcher.broadcasts), 1)
		self.assertEqual(self.dispatcher.broadcasts[0][0], attribution_id)

	def test_refusal_stands_when_ledger_write_fails(self):
		attribution_id = self.start()

		with patch.object(self.coordinator.ledger, "_locked_record", side_effect=DatabaseError("ledger down")):
			with self.assertLogs("services.attribution.coordinator", level="ERROR"):
				result = call_with_single_retry(self.coordinator.handle_refuse, attribution_id, self.pro_a.id)

		self.assertTrue(result.success)
		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.BROADCASTING)
		self.assertEqual(attribution.excluded_professional_ids, [self.pro_a.id])
		self.assertEqual(
			AttributionResponse.objects.filter(response_type=AttributionResponse.ResponseType.REFUSED).count(), 1
		)

	def test_cancel_rebroadcasts_when_ledger_write_fails(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)

		with patch.object(self.coordinator.ledger, "_locked_record", side_effect=DatabaseError("ledger down")):
			with self.assertLogs("services.attribution.coordinator", level="ERROR"):
				result = call_with_single_retry(
					self.coordinator.handle_cancel_after_accept, attribution_id, self.pro_a.id
				)

		self.assertTrue(result.success)
		self.assertEqual(result.extra, {"candidates": 2})
		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.RE_BROADCASTING)
		self.assertEqual(attribution.broadcast_count, 2)
		self.assertEqual(len(self.dispatcher.broadcasts), 2)
		_, ids, _ = self.dispatcher.broadcasts[1]
		self.assertEqual(ids, [self.pro_b.id, self.pro_c.id])
		self.assertFalse(PenaltyRecord.objects.filter(professional=self.pro_a).exists())

	def test_cancel_retried_after_rebroadcast_failure_finishes_the_round(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)
		matcher = self.coordinator.matcher
		flaky = fail_once(matcher.find_eligible, DataUnavailableError("registry down"))

		with patch.object(matcher, "find_eligible", side_effect=flaky):
			result = call_with_single_retry(
				self.coordinator.handle_cancel_after_accept, attribution_id, self.pro_a.id, "Sick"
			)

		self.assertTrue(result.success)
		self.assertEqual(result.extra, {"candidates": 2})
		attribution = Attribution.objects.get(pk=attribution_id)
		self.assertEqual(attribution.status, AttributionStatus.RE_BROADCASTING)
		self.assertEqual(attribution.broadcast_count, 2)
		self.assertEqual(len(self.dispatcher.broadcasts), 2)
		self.assertEqual(AttributionOffer.objects.filter(attribution=attribution, broadcast_round=2).count(), 2)
		self.assertEqual(
			AttributionResponse.objects.filter(response_type=AttributionResponse.ResponseType.CANCELLED).count(), 1
		)
		self.assertTrue(PenaltyRecord.objects.get(professional=self.pro_a, category="MOVING").blacklisted)

	def test_repeated_cancel_after_completed_rebroadcast_is_stale(self):
		attribution_id = self.start()
		self.coordinator.handle_accept(attribution_id, self.pro_a.id)
		self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id)

		again = self.coordinator.handle_cancel_after_accept(attribution_id, self.pro_a.id)

		self.assertFalse(again.success)
		self.assertEqual(again.error_code, "invalid_transition")
		self.assertEqual(len(self.dispatcher.broadcasts), 2)
		self.assertEqual(Attribution.objects.get(pk=attribution_id).broadcast_count, 2)


class ExpireAndQueryTests(AttributionTestMixin, TestCase):
	def test_expire_only_affects_open_attributions(self):
		open_id = self.start()
		accepted_id = self.start(booking=make_booking())
		self.coordinator.handle_accept(accepted_id, self.pro_a.id)

		self.assertTrue(self.coordinator.expire(open_id))
		self.assertFalse(self.coordinator.expire(open_id))
		self.assertFalse(self.coordinator.expire(accepted_id))
		self.assertFalse(self.coordinator.expire(999999))

		self.assertEqual(Attribution.objects.get(pk=open_id).status, AttributionStatus.EXPIRED)
		self.assertEqual(Attribution.objects.get(pk=accepted_id).status, AttributionStatus.ACCEPTED)

	def test_get_status_returns_snapshot_with_responses(self):
		attribution_id = self.start()
		self.coordinator.handle_refuse(attribution_id, self.pro_a.id)

		attribution = self.coordinator.get_status(attribution_id)

		self.assertEqual(attribution.id, attribution_id)
		self.assertEqual([r.professional_id for r in attribution.responses.all()], [self.pro_a.id])

	def test_get_status_unknown_raises_not_found(self):
		with self.assertRaises(AttributionNotFoundError):
			self.coordinator.get_status(999999)

	def test_professional_history_is_latest_first(self):
		first_id = self.start()
		second_id = self.start(booking=make_booking())
		self.coordinator.handle_refuse(first_id, self.pro_a.id)
		self.coordinator.handle_accept(second_id, self.pro_a.id)

		history = self.coordinator.get_professional_history(self.pro_a.id, limit=10)

		self.assertEqual([r.attribution_id for r in history], [second_id, first_id])
		self.assertEqual(history[0].response_type, AttributionResponse.ResponseType.ACCEPTED)


class RetryPolicyTests(TestCase):
	def test_retries_once_on_data_unavailable(self):
		calls = []

		def flaky():
			calls.append(1)
			if len(calls) == 1:
				raise DataUnavailableError("timeout")
			return "ok"

		self.assertEqual(call_with_single_retry(flaky), "ok")
		self.assertEqual(len(calls), 2)

	def test_second_failure_propagates(self):
		calls = []

		def down():
			calls.append(1)
			raise DataUnavailableError("down")

		with self.assertRaises(DataUnavailableError):
			call_with_single_retry(down)
		self.assertEqual(len(calls), 2)


class BookingSummaryTests(TestCase):
	def test_summary_exposes_limited_client_data(self):
		now = timezone.now()
		booking = make_booking(scheduled_date=now + timedelta(hours=12))

		summary = build_booking_summary(booking, "MOVING", now=now)

		self.assertEqual(summary.customer_name, "M. Dupont")
		self.assertEqual(summary.pickup_area, "75001 Paris")
		self.assertEqual(summary.delivery_area, "69006 Lyon")
		self.assertEqual(summary.estimated_amount, 850)
		self.assertEqual(summary.currency, "EUR")
		self.assertEqual(summary.category_label, "Moving")
		self.assertEqual(summary.estimated_duration, "3-4h")
		self.assertEqual(summary.priority, "urgent")
		self.assertEqual(summary.response_deadline, now + timedelta(hours=2))
		self.assertEqual(summary.reference, "EQ-TEST0001")

		data = summary.as_dict()
		self.assertNotIn("customer_email", data)
		self.assertIsInstance(data["response_deadline"], str)

	def test_summary_without_reference_or_date(self):
		booking = make_booking(reference="", scheduled_date=None, delivery_address=None)

		summary = build_booking_summary(booking, "CLEANING")

		self.assertEqual(summary.reference, f"EQ-{str(booking.id).zfill(8)}")
		self.assertEqual(summary.priority, "normal")
		self.assertIsNone(summary.delivery_area)
		self.assertEqual(summary.estimated_duration, "2-4h")
