"""Mission summary sent with each offer, carrying limited client data."""

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from django.conf import settings
from django.utils import timezone

from common.utils import (
    calculate_response_deadline,
    determine_priority,
    estimate_duration,
    extract_city_from_address,
    get_service_category_label,
    mask_customer_name,
)


@dataclass
class BookingSummary:
    booking_id: int
    reference: str
    category: str
    category_label: str
    customer_name: str
    pickup_area: str
    delivery_area: Optional[str]
    service_date: Optional[datetime]
    estimated_amount: int
    currency: str
    estimated_duration: str
    priority: str
    response_deadline: datetime

    def as_dict(self) -> Dict[str, Any]:
        """JSON-safe representation for channel and HTTP payloads."""
        data = asdict(self)
        for key in ("service_date", "response_deadline"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


def build_booking_summary(booking, category: str, now: Optional[datetime] = None) -> BookingSummary:
    now = now or timezone.now()
    factor = Decimal(str(settings.ATTRIBUTION_ESTIMATION_FACTOR))
    estimated = (Decimal(booking.total_amount or 0) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    priority = determine_priority(booking.scheduled_date, now=now)

    return BookingSummary(
        booking_id=booking.id,
        reference=booking.display_reference,
        category=category,
        category_label=get_service_category_label(category),
        customer_name=mask_customer_name(booking.customer_first_name, booking.customer_last_name),
        pickup_area=extract_city_from_address(booking.location_address),
        delivery_area=(
            extract_city_from_address(booking.delivery_address) if booking.delivery_address else None
        ),
        service_date=booking.scheduled_date,
        estimated_amount=int(estimated),
        currency="EUR",
        estimated_duration=estimate_duration(category, booking.volume_m3),
        priority=str(priority),
        response_deadline=calculate_response_deadline(priority, now=now),
    )
