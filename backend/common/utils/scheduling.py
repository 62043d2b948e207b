"""Priority and response-deadline heuristics for mission offers."""

from datetime import datetime, timedelta
from typing import Optional

from django.db import models
from django.utils import timezone


class Priority(models.TextChoices):
    NORMAL = 'normal', 'Normal'
    HIGH = 'high', 'High'
    URGENT = 'urgent', 'Urgent'


_RESPONSE_WINDOWS = {
    Priority.URGENT: timedelta(hours=2),
    Priority.HIGH: timedelta(hours=12),
    Priority.NORMAL: timedelta(hours=24),
}


def determine_priority(service_date: Optional[datetime], now: Optional[datetime] = None) -> str:
    """
    Derive an offer priority from how soon the service takes place.

    Within a day is urgent, within three days is high, anything later
    (or undated) is normal.
    """
    if service_date is None:
        return Priority.NORMAL
    now = now or timezone.now()
    remaining = service_date - now
    if remaining <= timedelta(days=1):
        return Priority.URGENT
    if remaining <= timedelta(days=3):
        return Priority.HIGH
    return Priority.NORMAL


def calculate_response_deadline(priority: str, now: Optional[datetime] = None) -> datetime:
    """Date before which a professional is expected to answer an offer."""
    now = now or timezone.now()
    return now + _RESPONSE_WINDOWS.get(priority, _RESPONSE_WINDOWS[Priority.NORMAL])
