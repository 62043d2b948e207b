"""
Precise road-distance lookups used to refine haversine estimates.

Lookups are best-effort: callers catch DistanceLookupError (or any
transport error) and fall back to the great-circle value.
"""

import logging
from typing import Optional

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)


class DistanceLookupError(Exception):
    """Raised when the provider cannot return a distance for a pair of places."""
    pass


class DistanceLookup:
    """Interface for precise distance providers."""

    async def precise_distance_km(self, origin: str, destination: str) -> float:
        raise NotImplementedError


class GoogleDistanceMatrixLookup(DistanceLookup):
    """Google Distance Matrix API over an async HTTP client."""

    def __init__(self, api_key: str, url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key
        self.url = url or settings.GOOGLE_DISTANCE_MATRIX_URL
        self.timeout = timeout if timeout is not None else settings.GOOGLE_DISTANCE_TIMEOUT_SECONDS

    async def precise_distance_km(self, origin: str, destination: str) -> float:
        params = {
            "origins": origin,
            "destinations": destination,
            "units": "metric",
            "key": self.api_key,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(self.url, params=params)
            if resp.status_code >= 400:
                raise DistanceLookupError(f"Distance Matrix HTTP {resp.status_code}: {resp.text[:200]}")
            payload = resp.json()

        if payload.get("status") != "OK":
            raise DistanceLookupError(f"Distance Matrix status {payload.get('status')}")

        try:
            element = payload["rows"][0]["elements"][0]
        except (KeyError, IndexError) as exc:
            raise DistanceLookupError("Distance Matrix response has no element") from exc

        if element.get("status") != "OK":
            raise DistanceLookupError(f"No route between {origin!r} and {destination!r}: {element.get('status')}")

        meters = element["distance"]["value"]
        logger.debug("Distance Matrix %s -> %s: %sm", origin, destination, meters)
        return meters / 1000.0


def get_default_distance_lookup() -> Optional[DistanceLookup]:
    """Return the configured provider, or None when no API key is set."""
    api_key = getattr(settings, "GOOGLE_MAPS_API_KEY", "")
    if not api_key:
        return None
    return GoogleDistanceMatrixLookup(api_key)
