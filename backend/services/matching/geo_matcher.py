"""
Find professionals eligible to receive an attribution offer.

Distances are first estimated with the haversine formula against each
professional's registered coordinates; candidates comfortably inside the
radius are then refined with a precise road-distance lookup when one is
configured. Results are always recomputed, never cached across calls.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from asgiref.sync import async_to_sync
from django.conf import settings
from django.db.models import Count

from professionals.models import Professional
from common.utils import calculate_distance_km, round_distance_km, format_coordinates
from services.exceptions import store_errors
from .distance_lookup import DistanceLookup, get_default_distance_lookup

logger = logging.getLogger(__name__)

_DEFAULT_LOOKUP = object()


@dataclass
class EligibleProfessional:
    """Professional matched for one attribution, with its distance to the target."""
    id: int
    company_name: str
    email: str
    phone: str
    latitude: float
    longitude: float
    distance_km: float
    city: str
    address: str

    def as_dict(self) -> Dict:
        return asdict(self)


class GeoMatcher:
    """
    Radius matching over the professional registry.

    Args:
        distance_lookup: precise distance provider; defaults to the configured
            Google Distance Matrix client, pass None to rely on haversine only
        using: database alias to query
        precise_margin: share of the effective radius under which the precise
            lookup runs
    """

    def __init__(self, distance_lookup=_DEFAULT_LOOKUP, using: str = "default",
                 precise_margin: Optional[float] = None):
        if distance_lookup is _DEFAULT_LOOKUP:
            distance_lookup = get_default_distance_lookup()
        self.distance_lookup: Optional[DistanceLookup] = distance_lookup
        self.using = using
        if precise_margin is None:
            precise_margin = settings.ATTRIBUTION_PRECISE_DISTANCE_MARGIN
        self.precise_margin = float(precise_margin)

    def find_eligible(
        self,
        category: str,
        target_lat: float,
        target_lon: float,
        max_radius_km: float,
        excluded_ids: Iterable[int] = (),
    ) -> List[EligibleProfessional]:
        """
        Return eligible professionals sorted nearest first (ties by id).

        Raises:
            ValueError: If the radius is not positive
            DataUnavailableError: If the professional registry cannot be read
        """
        if max_radius_km is None or float(max_radius_km) <= 0:
            raise ValueError("max_radius_km must be positive")
        radius = float(max_radius_km)
        excluded = {int(pid) for pid in excluded_ids}

        with store_errors("Professional lookup"):
            professionals = list(
                Professional.objects.using(self.using)
                .filter(
                    verified=True,
                    is_available=True,
                    latitude__isnull=False,
                    longitude__isnull=False,
                )
                .exclude(id__in=excluded)
            )

        # (professional, haversine km, effective radius)
        candidates: List[Tuple[Professional, float, float]] = []
        for professional in professionals:
            if not professional.serves(category):
                continue
            effective_radius = self._effective_radius(professional, radius)
            distance = calculate_distance_km(
                target_lat, target_lon, professional.latitude, professional.longitude
            )
            if distance > effective_radius:
                continue
            candidates.append((professional, distance, effective_radius))

        distances = self._refine_distances(candidates, target_lat, target_lon)

        # Ordered on the unrounded distance; distance_km is rounded for display
        ranked: List[Tuple[float, int, EligibleProfessional]] = []
        for (professional, _, effective_radius), distance in zip(candidates, distances):
            if distance > effective_radius:
                continue
            ranked.append((distance, professional.id, EligibleProfessional(
                id=professional.id,
                company_name=professional.company_name,
                email=professional.email,
                phone=professional.phone,
                latitude=float(professional.latitude),
                longitude=float(professional.longitude),
                distance_km=round_distance_km(distance),
                city=professional.city or "Not specified",
                address=professional.address or "",
            )))

        ranked.sort(key=lambda entry: (entry[0], entry[1]))
        eligible = [item for _, _, item in ranked]
        logger.info(
            "Matched %d/%d professionals for %s within %skm of (%s, %s)",
            len(eligible), len(professionals), category, radius, target_lat, target_lon
        )
        return eligible

    def _refine_distances(self, candidates, target_lat, target_lon) -> List[float]:
        distances = [distance for _, distance, _ in candidates]
        if self.distance_lookup is None:
            return distances

        to_refine = [
            index for index, (_, distance, effective_radius) in enumerate(candidates)
            if distance <= effective_radius * self.precise_margin
        ]
        if not to_refine:
            return distances

        destination = format_coordinates(target_lat, target_lon)
        origins = [self._origin_for(candidates[index][0]) for index in to_refine]
        results = async_to_sync(self._lookup_all)(origins, destination)

        for index, result in zip(to_refine, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Precise distance failed for professional %s, keeping haversine %.1fkm: %s",
                    candidates[index][0].id, distances[index], result
                )
                continue
            distances[index] = float(result)
        return distances

    async def _lookup_all(self, origins: Sequence[str], destination: str) -> list:
        return await asyncio.gather(
            *(self.distance_lookup.precise_distance_km(origin, destination) for origin in origins),
            return_exceptions=True,
        )

    @staticmethod
    def _effective_radius(professional: Professional, radius: float) -> float:
        """Search radius capped by the professional's own radius (0 is a real limit)."""
        if professional.max_distance_km is None:
            return radius
        return min(radius, float(professional.max_distance_km))

    @staticmethod
    def _origin_for(professional: Professional) -> str:
        if professional.address:
            return professional.address
        return format_coordinates(professional.latitude, professional.longitude)

    def is_in_service_area(
        self,
        professional_id: int,
        target_lat: float,
        target_lon: float,
        max_radius_km: Optional[float] = None,
    ) -> bool:
        """Haversine-only check that a professional could serve a location."""
        if max_radius_km is None:
            max_radius_km = settings.ATTRIBUTION_DEFAULT_RADIUS_KM
        with store_errors("Professional lookup"):
            professional = (
                Professional.objects.using(self.using)
                .filter(id=professional_id, verified=True, is_available=True)
                .first()
            )
        if professional is None or not professional.has_coordinates:
            return False

        effective_radius = self._effective_radius(professional, float(max_radius_km))
        distance = calculate_distance_km(
            target_lat, target_lon, professional.latitude, professional.longitude
        )
        return distance <= effective_radius

    def popular_service_areas(self, limit: int = 20) -> List[Dict]:
        """Cities with the most verified, available professionals."""
        with store_errors("Service area lookup"):
            rows = list(
                Professional.objects.using(self.using)
                .filter(verified=True, is_available=True, city__isnull=False)
                .exclude(city="")
                .values("city")
                .annotate(count=Count("id"))
                .order_by("-count", "city")[:limit]
            )
        return [{"city": row["city"], "count": row["count"]} for row in rows]
