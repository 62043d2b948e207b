"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - matching: Radius matching of professionals (GeoMatcher)
    - penalties: Refusal counters and per-category blacklist (PenaltyLedger)
    - notifications: Offer fan-out to professionals (NotificationDispatcher)
    - attribution: Attribution state machine (AttributionCoordinator)
    - exceptions: Error taxonomy shared by the packages above
"""

from .exceptions import (
    AttributionError,
    NotFoundError,
    AttributionNotFoundError,
    BookingNotFoundError,
    ProfessionalNotFoundError,
    InvalidTransitionError,
    RaceLostError,
    DataUnavailableError,
    PartialDeliveryFailure,
)
from .matching import EligibleProfessional, GeoMatcher
from .penalties import PenaltyLedger
from .notifications import NotificationDispatcher, ChannelsNotificationDispatcher
from .attribution import AttributionCoordinator, AttributionResult, call_with_single_retry

__all__ = [
    # Matching
    "EligibleProfessional",
    "GeoMatcher",
    # Penalties
    "PenaltyLedger",
    # Notifications
    "NotificationDispatcher",
    "ChannelsNotificationDispatcher",
    # Attribution
    "AttributionCoordinator",
    "AttributionResult",
    "call_with_single_retry",
    # Exceptions
    "AttributionError",
    "NotFoundError",
    "AttributionNotFoundError",
    "BookingNotFoundError",
    "ProfessionalNotFoundError",
    "InvalidTransitionError",
    "RaceLostError",
    "DataUnavailableError",
    "PartialDeliveryFailure",
]
