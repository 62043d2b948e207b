"""
Professional matching service.

This module handles:
    - Radius matching of professionals around a service location
    - Precise road-distance refinement with haversine fallback
    - Service-area checks and popular service areas
"""

from .distance_lookup import (
    DistanceLookup,
    DistanceLookupError,
    GoogleDistanceMatrixLookup,
    get_default_distance_lookup,
)
from .geo_matcher import EligibleProfessional, GeoMatcher

__all__ = [
    "DistanceLookup",
    "DistanceLookupError",
    "GoogleDistanceMatrixLookup",
    "get_default_distance_lookup",
    "EligibleProfessional",
    "GeoMatcher",
]
