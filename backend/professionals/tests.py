from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import httpx
from asgiref.sync import async_to_sync
from django.contrib.auth.models import User
from django.db import DatabaseError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from attribution.tests.factories import TARGET_LAT, TARGET_LON, make_professional
from common.utils import (
	calculate_distance_km,
	calculate_response_deadline,
	determine_priority,
	estimate_duration,
	extract_city_from_address,
	extract_district_from_address,
	mask_customer_name,
	normalize_service_category,
)
from common.utils.tokens import (
	build_response_urls,
	make_professional_token,
	make_response_token,
	read_professional_token,
	verify_response_token,
)
from services.exceptions import DataUnavailableError
from services.matching import GeoMatcher
from services.matching.distance_lookup import (
	DistanceLookup,
	DistanceLookupError,
	GoogleDistanceMatrixLookup,
	get_default_distance_lookup,
)
from .models import Professional
from .views import (
	PopularServiceAreasView,
	ProfessionalAvailabilityView,
	ProfessionalLocationView,
	ProfessionalPenaltiesView,
	ServiceAreaCheckView,
)


class FakeLookup(DistanceLookup):
	"""Road distances keyed by professional address."""

	def __init__(self, distances, fail_for=()):
		self.distances = distances
		self.fail_for = set(fail_for)
		self.origins = []

	async def precise_distance_km(self, origin, destination):
		self.origins.append(origin)
		if origin in self.fail_for:
			raise DistanceLookupError("ZERO_RESULTS")
		return self.distances[origin]


class GeoMatcherTests(TestCase):
	def setUp(self):
		self.matcher = GeoMatcher(distance_lookup=None)

	def _ids(self, eligible):
		return [item.id for item in eligible]

	def test_radius_filter_and_nearest_first(self):
		near = make_professional("Near", 5)
		middle = make_professional("Middle", 50)
		make_professional("Far", 120)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(self._ids(eligible), [near.id, middle.id])
		self.assertEqual([item.distance_km for item in eligible], [5.0, 50.0])

	def test_ties_are_broken_by_id(self):
		first = make_professional("First", 10)
		second = make_professional("Second", 10)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(self._ids(eligible), sorted([first.id, second.id]))

	def test_order_uses_unrounded_distance(self):
		further = make_professional("Further", 5.04)
		closer = make_professional("Closer", 5.01)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(self._ids(eligible), [closer.id, further.id])
		self.assertEqual([item.distance_km for item in eligible], [5.0, 5.0])

	def test_zero_professional_radius_is_a_limit(self):
		stay_home = make_professional("Stay Home", 1, max_distance_km=0)
		open_ended = make_professional("Open Ended", 2, max_distance_km=None)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(self._ids(eligible), [open_ended.id])
		self.assertFalse(self.matcher.is_in_service_area(stay_home.id, TARGET_LAT, TARGET_LON, 100))
		self.assertTrue(self.matcher.is_in_service_area(open_ended.id, TARGET_LAT, TARGET_LON, 100))

	def test_excluded_unverified_unavailable_and_other_categories_are_skipped(self):
		kept = make_professional("Kept", 5)
		excluded = make_professional("Excluded", 6)
		make_professional("Unverified", 7, verified=False)
		make_professional("Away", 8, is_available=False)
		make_professional("Cleaner", 9, categories=("CLEANING",))
		make_professional("Nowhere", 10, latitude=None, longitude=None)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100, {excluded.id})

		self.assertEqual(self._ids(eligible), [kept.id])

	def test_professional_radius_caps_search_radius(self):
		make_professional("Local", 30, max_distance_km=20)
		wide = make_professional("Wide", 30, max_distance_km=200)

		eligible = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(self._ids(eligible), [wide.id])

	def test_result_carries_contact_details(self):
		make_professional("Alpha", 12.34)

		item = self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)[0]

		self.assertEqual(item.distance_km, 12.3)
		self.assertEqual(item.as_dict()["email"], "alpha@example.com")
		self.assertEqual(item.city, "Paris")

	def test_non_positive_radius_is_rejected(self):
		with self.assertRaises(ValueError):
			self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 0)
		with self.assertRaises(ValueError):
			self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, -5)

	def test_store_failure_raises_data_unavailable(self):
		with patch.object(Professional.objects, 'using', side_effect=DatabaseError("gone")):
			with self.assertRaises(DataUnavailableError):
				self.matcher.find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

	def test_precise_distance_can_push_professional_out_of_radius(self):
		river = make_professional("River", 30)
		straight = make_professional("Straight", 40)
		lookup = FakeLookup({"River HQ": 130.0, "Straight HQ": 42.5})

		eligible = GeoMatcher(distance_lookup=lookup, precise_margin=0.8).find_eligible(
			"MOVING", TARGET_LAT, TARGET_LON, 100
		)

		self.assertEqual(self._ids(eligible), [straight.id])
		self.assertEqual(eligible[0].distance_km, 42.5)
		self.assertNotIn(river.id, self._ids(eligible))

	def test_precise_lookup_only_runs_inside_margin(self):
		inside = make_professional("Inside", 50)
		edge = make_professional("Edge", 90)
		lookup = FakeLookup({"Inside HQ": 55.0})

		eligible = GeoMatcher(distance_lookup=lookup, precise_margin=0.8).find_eligible(
			"MOVING", TARGET_LAT, TARGET_LON, 100
		)

		self.assertEqual(lookup.origins, ["Inside HQ"])
		self.assertEqual([(item.id, item.distance_km) for item in eligible], [(inside.id, 55.0), (edge.id, 90.0)])

	def test_failed_lookup_falls_back_to_haversine(self):
		flaky = make_professional("Flaky", 20)
		lookup = FakeLookup({}, fail_for={"Flaky HQ"})

		with self.assertLogs("services.matching.geo_matcher", level="WARNING"):
			eligible = GeoMatcher(distance_lookup=lookup).find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual([(item.id, item.distance_km) for item in eligible], [(flaky.id, 20.0)])

	def test_lookup_origin_uses_coordinates_without_address(self):
		make_professional("Bare", 10, address="")
		lookup = FakeLookup({})

		GeoMatcher(distance_lookup=lookup).find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100)

		self.assertEqual(len(lookup.origins), 1)
		self.assertRegex(lookup.origins[0], r"^\d+\.\d{6},\d+\.\d{6}$")

	def test_is_in_service_area(self):
		professional = make_professional("Alpha", 40, max_distance_km=50)
		away = make_professional("Away", 5, is_available=False)

		self.assertTrue(self.matcher.is_in_service_area(professional.id, TARGET_LAT, TARGET_LON, 100))
		self.assertFalse(self.matcher.is_in_service_area(professional.id, TARGET_LAT, TARGET_LON, 30))
		self.assertFalse(self.matcher.is_in_service_area(away.id, TARGET_LAT, TARGET_LON, 100))
		self.assertFalse(self.matcher.is_in_service_area(999999, TARGET_LAT, TARGET_LON, 100))

	def test_popular_service_areas(self):
		make_professional("Paris One", 5)
		make_professional("Paris Two", 6)
		make_professional("Lyon One", 7, city="Lyon")
		make_professional("Lyon Away", 8, city="Lyon", is_available=False)
		make_professional("No City", 9, city="")

		areas = self.matcher.popular_service_areas()

		self.assertEqual(areas, [{"city": "Paris", "count": 2}, {"city": "Lyon", "count": 1}])
		self.assertEqual(len(self.matcher.popular_service_areas(limit=1)), 1)


class GoogleDistanceMatrixLookupTests(TestCase):
	def _lookup_with(self, handler):
		real_client = httpx.AsyncClient

		def client_factory(**kwargs):
			return real_client(transport=httpx.MockTransport(handler), **kwargs)

		patcher = patch('services.matching.distance_lookup.httpx.AsyncClient', side_effect=client_factory)
		patcher.start()
		self.addCleanup(patcher.stop)
		return GoogleDistanceMatrixLookup("test-key", url="https://maps.example.com/distancematrix/json")

	def test_returns_kilometres(self):
		seen = {}

		def handler(request):
			seen.update(request.url.params)
			return httpx.Response(200, json={
				"status": "OK",
				"rows": [{"elements": [{"status": "OK", "distance": {"value": 12345}}]}],
			})

		lookup = self._lookup_with(handler)
		distance = async_to_sync(lookup.precise_distance_km)("Alpha HQ", "48.856600,2.352200")

		self.assertEqual(distance, 12.345)
		self.assertEqual(seen["origins"], "Alpha HQ")
		self.assertEqual(seen["key"], "test-key")

	def test_element_without_route_raises(self):
		lookup = self._lookup_with(lambda request: httpx.Response(200, json={
			"status": "OK",
			"rows": [{"elements": [{"status": "ZERO_RESULTS"}]}],
		}))

		with self.assertRaises(DistanceLookupError):
			async_to_sync(lookup.precise_distance_km)("Island", "48.856600,2.352200")

	def test_denied_request_raises(self):
		lookup = self._lookup_with(lambda request: httpx.Response(200, json={"status": "REQUEST_DENIED"}))

		with self.assertRaises(DistanceLookupError):
			async_to_sync(lookup.precise_distance_km)("Alpha HQ", "48.856600,2.352200")

	def test_http_error_raises(self):
		lookup = self._lookup_with(lambda request: httpx.Response(500, text="boom"))

		with self.assertRaises(DistanceLookupError):
			async_to_sync(lookup.precise_distance_km)("Alpha HQ", "48.856600,2.352200")

	@override_settings(GOOGLE_MAPS_API_KEY="")
	def test_no_default_lookup_without_api_key(self):
		self.assertIsNone(get_default_distance_lookup())

	@override_settings(GOOGLE_MAPS_API_KEY="abc")
	def test_default_lookup_with_api_key(self):
		self.assertIsInstance(get_default_distance_lookup(), GoogleDistanceMatrixLookup)


class ProfessionalViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.operator = User.objects.create_user(username='operator', password='operator1234')
		self.professional = make_professional("Alpha", 5)
		self.token = make_professional_token(self.professional.id)

	def test_location_update_with_token(self):
		request = self.factory.post('/api/professionals/%d/location/' % self.professional.id, {
			'token': self.token,
			'latitude': '45.764043',
			'longitude': '4.835659',
		}, format='json')
		response = ProfessionalLocationView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 200)
		self.professional.refresh_from_db()
		self.assertEqual(self.professional.latitude, Decimal('45.764043'))
		self.assertEqual(self.professional.longitude, Decimal('4.835659'))

	def test_location_update_with_foreign_token_is_forbidden(self):
		other = make_professional("Bravo", 10)
		request = self.factory.post('/api/professionals/%d/location/' % self.professional.id, {
			'token': make_professional_token(other.id),
			'latitude': '45.0',
			'longitude': '4.0',
		}, format='json')
		response = ProfessionalLocationView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 403)

	def test_location_out_of_range_is_rejected(self):
		request = self.factory.post('/api/professionals/%d/location/' % self.professional.id, {
			'token': self.token,
			'latitude': '95.0',
			'longitude': '4.0',
		}, format='json')
		response = ProfessionalLocationView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 400)

	def test_availability_toggle(self):
		request = self.factory.put('/api/professionals/%d/availability/' % self.professional.id, {
			'token': self.token,
			'is_available': False,
		}, format='json')
		response = ProfessionalAvailabilityView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 200)
		self.professional.refresh_from_db()
		self.assertFalse(self.professional.is_available)
		self.assertEqual(GeoMatcher(distance_lookup=None).find_eligible("MOVING", TARGET_LAT, TARGET_LON, 100), [])

	def test_penalty_stats(self):
		from services.penalties import PenaltyLedger

		PenaltyLedger().record_refusal(self.professional.id, "MOVING")
		request = self.factory.get('/api/professionals/%d/penalties/' % self.professional.id)
		force_authenticate(request, user=self.operator)
		response = ProfessionalPenaltiesView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['entries'][0]['consecutive_refusals'], 1)
		self.assertEqual(response.data['active_blacklists'], 0)

	def test_service_area_check(self):
		request = self.factory.get('/api/professionals/%d/service-area/' % self.professional.id, {
			'latitude': TARGET_LAT,
			'longitude': TARGET_LON,
			'max_radius_km': 10,
		})
		force_authenticate(request, user=self.operator)
		response = ServiceAreaCheckView.as_view()(request, professional_id=self.professional.id)

		self.assertEqual(response.status_code, 200)
		self.assertTrue(response.data['in_service_area'])

	def test_popular_service_areas(self):
		request = self.factory.get('/api/professionals/service-areas/')
		force_authenticate(request, user=self.operator)
		response = PopularServiceAreasView.as_view()(request)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data, {"areas": [{"city": "Paris", "count": 1}], "count": 1})

	def test_popular_service_areas_when_store_is_down(self):
		request = self.factory.get('/api/professionals/service-areas/')
		force_authenticate(request, user=self.operator)
		with patch.object(Professional.objects, 'using', side_effect=DatabaseError("gone")):
			response = PopularServiceAreasView.as_view()(request)

		self.assertEqual(response.status_code, 503)


class TokenTests(TestCase):
	def test_response_token_is_bound_to_attribution_and_professional(self):
		token = make_response_token(3, 7)

		self.assertTrue(verify_response_token(token, 3, 7))
		self.assertFalse(verify_response_token(token, 3, 8))
		self.assertFalse(verify_response_token(token, 4, 7))
		self.assertFalse(verify_response_token(token + "x", 3, 7))
		self.assertFalse(verify_response_token("", 3, 7))

	def test_expired_response_token(self):
		token = make_response_token(3, 7)

		with patch('django.core.signing.time.time', return_value=timezone.now().timestamp() + 3600):
			self.assertFalse(verify_response_token(token, 3, 7, max_age=60))

	def test_response_urls(self):
		urls = build_response_urls(3, 7)

		self.assertIn("/api/attribution/3/accept/?professional_id=7&token=", urls["accept_url"])
		self.assertTrue(urls["refuse_url"].endswith(urls["token"]))

	def test_professional_token(self):
		self.assertEqual(read_professional_token(make_professional_token(12)), 12)
		self.assertIsNone(read_professional_token("garbage"))
		self.assertIsNone(read_professional_token(None))


class CommonUtilsTests(TestCase):
	def test_distance_between_paris_and_lyon(self):
		distance = calculate_distance_km(48.8566, 2.3522, 45.7640, 4.8357)
		self.assertAlmostEqual(distance, 392, delta=2)

	def test_category_aliases(self):
		self.assertEqual(normalize_service_category("moving"), "MOVING")
		self.assertEqual(normalize_service_category("MOVING_PREMIUM"), "MOVING")
		self.assertEqual(normalize_service_category("menage"), "CLEANING")
		self.assertEqual(normalize_service_category("unknown"), "SERVICE")
		self.assertEqual(normalize_service_category(None), "SERVICE")

	def test_duration_estimate(self):
		self.assertEqual(estimate_duration("MOVING", 45), "5-6h")
		self.assertEqual(estimate_duration("MOVING"), "3-5h")
		self.assertEqual(estimate_duration("DELIVERY"), "1-2h")

	def test_addresses(self):
		self.assertEqual(extract_city_from_address("8 rue Lepic, 75018 Paris, France"), "75018 Paris")
		self.assertEqual(extract_city_from_address("Chemin des Vignes, Beaune"), "Beaune")
		self.assertEqual(extract_city_from_address(""), "Not specified")
		self.assertEqual(extract_district_from_address("8 rue Lepic, 75018 Paris"), "18e")
		self.assertEqual(extract_district_from_address("2 place du Louvre, 75001 Paris"), "1er")
		self.assertEqual(mask_customer_name("jean", "Martin"), "J. Martin")
		self.assertEqual(mask_customer_name("", "Martin"), "Martin")

	def test_priority_and_deadline(self):
		now = timezone.now()

		self.assertEqual(determine_priority(now + timedelta(hours=6), now=now), "urgent")
		self.assertEqual(determine_priority(now + timedelta(days=2), now=now), "high")
		self.assertEqual(determine_priority(now + timedelta(days=10), now=now), "normal")
		self.assertEqual(determine_priority(None, now=now), "normal")
		self.assertEqual(calculate_response_deadline("high", now=now), now + timedelta(hours=12))
