"""Common utility functions."""

from .geo import calculate_distance_km, round_distance_km, format_coordinates
from .categories import ServiceCategory, normalize_service_category, get_service_category_label, estimate_duration
from .addresses import extract_city_from_address, extract_district_from_address, mask_customer_name
from .scheduling import Priority, determine_priority, calculate_response_deadline

__all__ = [
    "calculate_distance_km",
    "round_distance_km",
    "format_coordinates",
    "ServiceCategory",
    "normalize_service_category",
    "get_service_category_label",
    "estimate_duration",
    "extract_city_from_address",
    "extract_district_from_address",
    "mask_customer_name",
    "Priority",
    "determine_priority",
    "calculate_response_deadline",
]
