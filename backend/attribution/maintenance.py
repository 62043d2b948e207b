"""Housekeeping shared by Celery beat and the management commands."""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from django.conf import settings
from django.utils import timezone

from .models import OPEN_STATUSES, Attribution, AttributionOffer, AttributionResponse, AttributionStatus

logger = logging.getLogger(__name__)


def expire_stale_attributions(minutes: Optional[int] = None, coordinator=None) -> List[int]:
    """
    Expire open attributions whose last broadcast is older than `minutes`.

    Returns:
        Ids of the attributions actually expired
    """
    if minutes is None:
        minutes = settings.ATTRIBUTION_STALE_AFTER_MINUTES
    if coordinator is None:
        from services.attribution import AttributionCoordinator
        coordinator = AttributionCoordinator()

    cutoff = timezone.now() - timedelta(minutes=minutes)
    stale_ids = list(
        Attribution.objects.using(coordinator.using)
        .filter(status__in=OPEN_STATUSES, last_broadcast_at__lt=cutoff)
        .values_list("id", flat=True)
    )

    expired = [attribution_id for attribution_id in stale_ids if coordinator.expire(attribution_id)]
    if expired:
        logger.info("Expired %d stale attributions (older than %d minutes)", len(expired), minutes)
    return expired


def cleanup_old_data(days: int = 30, dry_run: bool = False) -> Dict[str, int]:
    """
    Delete offers of closed attributions and responses of expired ones older than `days`.
    """
    cutoff = timezone.now() - timedelta(days=days)

    old_offers = AttributionOffer.objects.filter(
        sent_at__lt=cutoff,
    ).exclude(attribution__status__in=OPEN_STATUSES)
    old_responses = AttributionResponse.objects.filter(
        responded_at__lt=cutoff,
        attribution__status=AttributionStatus.EXPIRED,
    )

    counts = {"offers": old_offers.count(), "responses": old_responses.count()}
    if not dry_run:
        old_offers.delete()
        old_responses.delete()
        logger.info("Cleaned up %(offers)d old offers and %(responses)d old responses", counts)
    return counts
