"""Celery tasks for attribution background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def start_attribution_task(booking_id: int, category: str, latitude: float, longitude: float,
                           max_radius_km: float = None):
    """
    Start the attribution of a booking once its payment is confirmed.

    Queued by the payment worker so the webhook returns immediately.
    """
    from services.attribution import AttributionCoordinator, call_with_single_retry
    from services.exceptions import BookingNotFoundError

    coordinator = AttributionCoordinator()
    try:
        attribution_id = call_with_single_retry(
            coordinator.start, booking_id, category, latitude, longitude, max_radius_km
        )
    except BookingNotFoundError:
        logger.warning("Booking %s not found, attribution not started", booking_id)
        return None

    logger.info("Attribution %s started for booking %s", attribution_id, booking_id)
    return attribution_id


@shared_task
def expire_stale_attributions_task(minutes: int = None):
    """
    Periodic task expiring attributions nobody accepted in time.

    Scheduled by Celery beat (see CELERY_BEAT_SCHEDULE).
    """
    from .maintenance import expire_stale_attributions

    expired = expire_stale_attributions(minutes=minutes)
    return len(expired)
