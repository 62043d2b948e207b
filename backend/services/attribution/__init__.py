"""
Attribution lifecycle: broadcast, accept, refuse, cancel-after-accept, expire.
"""

from .coordinator import AttributionCoordinator, AttributionResult, call_with_single_retry
from .summary import BookingSummary, build_booking_summary

__all__ = [
    "AttributionCoordinator",
    "AttributionResult",
    "call_with_single_retry",
    "BookingSummary",
    "build_booking_summary",
]
