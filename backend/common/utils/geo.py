"""
Geographic utility functions.

This module provides the core geospatial calculations used by professional matching.
"""

from math import radians, cos, sin, asin, sqrt

EARTH_RADIUS_KM = 6371.0


def calculate_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate great-circle distance between two points in kilometres (Haversine formula).

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in kilometres
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_KM


def round_distance_km(distance_km: float) -> float:
    """Round a distance to 100 m, the precision shown to professionals."""
    return round(float(distance_km), 1)


def format_coordinates(lat: float, lon: float) -> str:
    """Format coordinates as a "lat,lon" string accepted by distance APIs."""
    return f"{float(lat):.6f},{float(lon):.6f}"
