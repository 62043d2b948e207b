"""Service categories and the heuristics attached to them."""

from typing import Optional

from django.db import models


class ServiceCategory(models.TextChoices):
    MOVING = 'MOVING', 'Moving'
    CLEANING = 'CLEANING', 'Cleaning'
    PACKING = 'PACKING', 'Packing'
    DELIVERY = 'DELIVERY', 'Delivery'
    SERVICE = 'SERVICE', 'Other service'


# Legacy booking types and French labels still sent by older quote flows
_CATEGORY_ALIASES = {
    'MOVING_PREMIUM': ServiceCategory.MOVING,
    'MOVING_EASY': ServiceCategory.MOVING,
    'DEMENAGEMENT': ServiceCategory.MOVING,
    'MENAGE': ServiceCategory.CLEANING,
    'CLEANING_PREMIUM': ServiceCategory.CLEANING,
    'EMBALLAGE': ServiceCategory.PACKING,
    'LIVRAISON': ServiceCategory.DELIVERY,
    'TRANSPORT': ServiceCategory.DELIVERY,
    'CUSTOM': ServiceCategory.SERVICE,
    'PACK': ServiceCategory.SERVICE,
}

_BASE_DURATIONS = {
    ServiceCategory.MOVING: '3-5h',
    ServiceCategory.CLEANING: '2-4h',
    ServiceCategory.PACKING: '2-3h',
    ServiceCategory.DELIVERY: '1-2h',
}

_REQUIREMENTS = {
    ServiceCategory.MOVING: 'Utility vehicle, handling equipment, straps',
    ServiceCategory.CLEANING: 'Professional cleaning equipment and products',
    ServiceCategory.PACKING: 'Boxes, wrapping material, tape',
    ServiceCategory.DELIVERY: 'Utility vehicle',
}


def normalize_service_category(value: Optional[str]) -> str:
    """
    Map a raw category or legacy booking type onto a ServiceCategory value.

    Unknown or empty values fall back to SERVICE.
    """
    if not value:
        return ServiceCategory.SERVICE
    key = str(value).strip().upper().replace('-', '_').replace(' ', '_')
    if key in ServiceCategory.values:
        return ServiceCategory(key)
    return _CATEGORY_ALIASES.get(key, ServiceCategory.SERVICE)


def get_service_category_label(category: str) -> str:
    return ServiceCategory(normalize_service_category(category)).label


def estimate_duration(category: str, volume_m3: Optional[float] = None) -> str:
    """
    Rough duration window shown on an offer.

    Moving scales with the declared volume (8 to 10 m3 per hour) when known.
    """
    category = normalize_service_category(category)
    if category == ServiceCategory.MOVING and volume_m3:
        low = int(-(-float(volume_m3) // 10))
        high = int(-(-float(volume_m3) // 8))
        return f"{low}-{high}h"
    return _BASE_DURATIONS.get(category, '2-4h')


def get_service_requirements(category: str) -> str:
    return _REQUIREMENTS.get(normalize_service_category(category), 'Professional equipment required')
