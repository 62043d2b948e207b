"""Custom exceptions for professional attribution."""

from contextlib import contextmanager

from django.db import DatabaseError


class AttributionError(Exception):
    """Base class for recoverable attribution errors carrying a user-facing message."""
    error_code = "attribution_error"
    default_message = "The attribution request could not be processed"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(AttributionError):
    error_code = "not_found"
    default_message = "Resource not found"


class AttributionNotFoundError(NotFoundError):
    """Raised when an attribution cannot be found."""
    default_message = "Attribution not found"


class BookingNotFoundError(NotFoundError):
    """Raised when a booking cannot be found."""
    default_message = "Booking not found"


class ProfessionalNotFoundError(NotFoundError):
    """Raised when a professional cannot be found."""
    default_message = "Professional not found"


class InvalidTransitionError(AttributionError):
    """Raised when an action does not match the attribution's current state."""
    error_code = "invalid_transition"
    default_message = "This mission is no longer available"


class RaceLostError(InvalidTransitionError):
    """Raised when an acceptance arrives after another professional already won."""
    error_code = "race_lost"


class DataUnavailableError(Exception):
    """Raised when the store or a required dependency is down."""
    error_code = "data_unavailable"


class PartialDeliveryFailure(Exception):
    """Raised when some offer notifications failed while others were delivered."""
    error_code = "partial_delivery_failure"

    def __init__(self, report):
        self.report = report
        failed = [outcome.professional_id for outcome in report.failed]
        super().__init__(
            f"{len(failed)} of {len(report.outcomes)} notifications failed "
            f"for attribution {report.attribution_id}: {failed}"
        )


@contextmanager
def store_errors(operation: str):
    """Re-raise database failures as DataUnavailableError."""
    try:
        yield
    except DatabaseError as exc:
        raise DataUnavailableError(f"{operation} failed: {exc}") from exc
