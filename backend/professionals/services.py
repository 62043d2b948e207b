import logging

from django.utils import timezone

from professionals.models import Professional

logger = logging.getLogger(__name__)


# PROFESSIONAL LOCATION UPDATE
def update_professional_coordinates(professional: Professional, lat, lon):
    """
    Update a professional's registered coordinates, used by:
    - HTTP location endpoint
    - WebSocket location_update messages
    """
    professional.latitude = lat
    professional.longitude = lon
    professional.last_location_update = timezone.now()
    professional.save(update_fields=["latitude", "longitude", "last_location_update", "updated_at"])

    logger.info("Professional %s moved to (%s, %s)", professional.id, lat, lon)
    return professional


# PROFESSIONAL AVAILABILITY
def set_professional_availability(professional: Professional, is_available: bool):
    """Unavailable professionals stop receiving offers until switched back."""
    professional.is_available = is_available
    professional.save(update_fields=["is_available", "updated_at"])

    logger.info("Professional %s availability set to %s", professional.id, is_available)
    return professional
