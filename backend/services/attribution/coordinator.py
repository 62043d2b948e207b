"""
Attribution state machine.

An attribution is one dispatch attempt of a paid booking to the professional
pool. It starts BROADCASTING, becomes ACCEPTED for the first professional
whose acceptance wins the conditional update, goes back to RE_BROADCASTING
when that professional cancels, and ends EXPIRED when nobody is left to ask
or a scheduler gives up on it.

State-machine violations (stale clicks, lost races, unknown ids) come back
as an unsuccessful AttributionResult. Only DataUnavailableError escapes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from attribution.models import (
    ACTIVE_STATUSES,
    OPEN_STATUSES,
    Attribution,
    AttributionOffer,
    AttributionResponse,
    AttributionStatus,
)
from bookings.models import Booking
from common.utils import normalize_service_category
from professionals.models import Professional
from services.exceptions import (
    AttributionError,
    AttributionNotFoundError,
    BookingNotFoundError,
    DataUnavailableError,
    InvalidTransitionError,
    PartialDeliveryFailure,
    ProfessionalNotFoundError,
    RaceLostError,
    store_errors,
)
from services.matching import EligibleProfessional, GeoMatcher
from services.notifications import (
    BroadcastReport,
    ChannelsNotificationDispatcher,
    DeliveryOutcome,
    NotificationDispatcher,
)
from services.penalties import PenaltyLedger
from .summary import build_booking_summary

logger = logging.getLogger(__name__)

ResponseType = AttributionResponse.ResponseType


@dataclass
class AttributionResult:
    """Result object for attribution operations."""
    success: bool
    attribution: Optional[Attribution] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: AttributionError, attribution: Optional[Attribution] = None):
        return cls(
            success=False,
            attribution=attribution,
            message=error.message,
            error_code=error.error_code,
        )


class AttributionCoordinator:
    """
    Owns the attribution lifecycle of bookings.

    All collaborators are injected; the database alias given as `using` is
    the only store the coordinator touches, and it is handed down to the
    default matcher and ledger.
    """

    def __init__(
        self,
        matcher: Optional[GeoMatcher] = None,
        ledger: Optional[PenaltyLedger] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        using: str = "default",
    ):
        self.using = using
        self.matcher = matcher or GeoMatcher(using=using)
        self.ledger = ledger or PenaltyLedger(using=using)
        self.dispatcher = dispatcher or ChannelsNotificationDispatcher()

    def _attributions(self):
        return Attribution.objects.using(self.using)

    # ===================== Broadcasting =====================

    def start(
        self,
        booking_id: int,
        category: str,
        latitude: float,
        longitude: float,
        max_radius_km: Optional[float] = None,
    ) -> int:
        """
        Create an attribution for a paid booking and broadcast it.

        A booking has at most one active attribution. Starting a booking that
        already has one returns that attribution; if its current round was
        never offered (an earlier call failed mid-broadcast) the broadcast is
        run again.

        Returns:
            The attribution id (the attribution is already EXPIRED when no
            professional qualified)

        Raises:
            BookingNotFoundError: If the booking does not exist
            ValueError: If the radius is not positive
            DataUnavailableError: If the store is unreachable
        """
        if max_radius_km is None:
            max_radius_km = settings.ATTRIBUTION_DEFAULT_RADIUS_KM
        if float(max_radius_km) <= 0:
            raise ValueError("max_radius_km must be positive")
        category = str(normalize_service_category(category))
        now = timezone.now()

        with store_errors("Attribution start"), transaction.atomic(using=self.using):
            booking = Booking.objects.using(self.using).select_for_update().filter(pk=booking_id).first()
            if booking is None:
                raise BookingNotFoundError()

            attribution = self._attributions().filter(
                booking=booking, status__in=ACTIVE_STATUSES
            ).first()
            created = attribution is None
            if created:
                attribution = self._attributions().create(
                    booking=booking,
                    category=category,
                    latitude=latitude,
                    longitude=longitude,
                    max_radius_km=float(max_radius_km),
                    status=AttributionStatus.BROADCASTING,
                    broadcast_count=1,
                    last_broadcast_at=now,
                    updated_at=now,
                )
            pending = created or (attribution.is_open and not self._round_offered(attribution))

        if created:
            logger.info(
                "Attribution %s started for booking %s (%s, %skm)",
                attribution.id, booking.id, category, max_radius_km
            )
        elif pending:
            logger.info(
                "Attribution %s of booking %s resumed, round %d was never offered",
                attribution.id, booking.id, attribution.broadcast_count
            )
        else:
            logger.info(
                "Booking %s already has attribution %s (%s)",
                booking.id, attribution.id, attribution.status
            )
            return attribution.id

        self._broadcast(attribution, booking)
        return attribution.id

    def _round_offered(self, attribution: Attribution) -> bool:
        return AttributionOffer.objects.using(self.using).filter(
            attribution_id=attribution.id,
            broadcast_round=attribution.broadcast_count,
        ).exists()

    def _broadcast(self, attribution: Attribution, booking: Booking) -> List[EligibleProfessional]:
        """Offer the attribution to everyone eligible; expire it when nobody is."""
        excluded = attribution.excluded_ids | self.ledger.get_blacklisted(attribution.category)
        candidates = self.matcher.find_eligible(
            attribution.category,
            attribution.latitude,
            attribution.longitude,
            attribution.max_radius_km,
            excluded,
        )

        if not candidates:
            self._expire(attribution.id, "no eligible professional")
            return []

        summary = build_booking_summary(booking, attribution.category)
        try:
            report = self.dispatcher.broadcast(attribution.id, candidates, summary)
        except Exception as exc:
            logger.exception("Offer dispatch for attribution %s failed", attribution.id)
            report = BroadcastReport(
                attribution.id,
                [DeliveryOutcome(candidate.id, False, str(exc)) for candidate in candidates],
            )

        self._record_offers(attribution, candidates, report)
        try:
            report.raise_for_failures()
        except PartialDeliveryFailure as exc:
            logger.warning("%s", exc)

        logger.info(
            "Attribution %s round %d broadcast to %d professionals (%d excluded)",
            attribution.id, attribution.broadcast_count, len(candidates), len(excluded)
        )
        return candidates

    def _record_offers(self, attribution, candidates, report: BroadcastReport) -> None:
        outcomes = {outcome.professional_id: outcome for outcome in report.outcomes}
        offers = []
        for candidate in candidates:
            outcome = outcomes.get(candidate.id)
            delivered = outcome is None or outcome.delivered
            offers.append(AttributionOffer(
                attribution_id=attribution.id,
                professional_id=candidate.id,
                broadcast_round=attribution.broadcast_count,
                distance_km=candidate.distance_km,
                status='sent' if delivered else 'failed',
                error='' if delivered else (outcome.error or ''),
            ))
        with store_errors("Offer bookkeeping"):
            AttributionOffer.objects.using(self.using).bulk_create(offers, ignore_conflicts=True)

    # ===================== Professional responses =====================

    def handle_accept(self, attribution_id: int, professional_id: int) -> AttributionResult:
        """
        First acceptance wins; later ones get "mission no longer available".

        The winning write is a single conditional UPDATE on the attribution
        row, so two concurrent acceptances can never both succeed.
        """
        try:
            with store_errors("Accept"), transaction.atomic(using=self.using):
                attribution = self._accept(int(attribution_id), int(professional_id))
        except AttributionError as exc:
            logger.info(
                "Acceptance of attribution %s by professional %s rejected: %s",
                attribution_id, professional_id, exc.error_code
            )
            return AttributionResult.failure(exc)

        logger.info("Attribution %s accepted by professional %s", attribution.id, professional_id)
        self._notify_taken(attribution)
        return AttributionResult(
            success=True,
            attribution=attribution,
            message="Mission accepted",
        )

    def _accept(self, attribution_id: int, professional_id: int) -> Attribution:
        now = timezone.now()
        self._require_professional(professional_id)

        current = self._attributions().select_for_update().filter(pk=attribution_id).first()
        if current is None:
            raise AttributionNotFoundError()
        if professional_id in current.excluded_ids:
            raise InvalidTransitionError("You can no longer accept this mission")

        updated = self._attributions().filter(
            pk=attribution_id,
            status__in=OPEN_STATUSES,
            accepted_professional__isnull=True,
        ).update(
            status=AttributionStatus.ACCEPTED,
            accepted_professional_id=professional_id,
            accepted_at=now,
            updated_at=now,
        )
        if not updated:
            raise self._diagnose_failed_accept(attribution_id, professional_id)

        attribution = self._attributions().get(pk=attribution_id)
        assigned = Booking.objects.using(self.using).filter(
            Q(professional__isnull=True) | Q(professional_id=professional_id),
            pk=attribution.booking_id,
        ).update(professional_id=professional_id)
        if not assigned:
            # Rolls the acceptance back with the enclosing transaction
            logger.warning(
                "Booking %s of attribution %s is already assigned to another professional",
                attribution.booking_id, attribution_id
            )
            raise RaceLostError()
        AttributionResponse.objects.using(self.using).create(
            attribution=attribution,
            professional_id=professional_id,
            response_type=ResponseType.ACCEPTED,
            responded_at=now,
        )
        self.ledger.reset_on_acceptance(professional_id, attribution.category)
        return attribution

    def _diagnose_failed_accept(self, attribution_id: int, professional_id: int) -> AttributionError:
        state = self._attributions().filter(pk=attribution_id).values(
            "status", "accepted_professional_id"
        ).first()
        if state is None:
            return AttributionNotFoundError()
        if state["status"] == AttributionStatus.ACCEPTED:
            if state["accepted_professional_id"] == professional_id:
                return InvalidTransitionError("You have already accepted this mission")
            return RaceLostError()
        return InvalidTransitionError()

    def _notify_taken(self, attribution: Attribution) -> None:
        recipients = set(
            AttributionOffer.objects.using(self.using)
            .filter(attribution_id=attribution.id)
            .values_list("professional_id", flat=True)
        )
        try:
            report = self.dispatcher.notify_taken(
                attribution.id, attribution.accepted_professional_id, recipients
            )
            if report is not None:
                report.raise_for_failures()
        except PartialDeliveryFailure as exc:
            logger.warning("%s", exc)
        except Exception:
            logger.exception("Taken notification for attribution %s failed", attribution.id)

    def handle_refuse(self, attribution_id: int, professional_id: int,
                      reason: Optional[str] = None) -> AttributionResult:
        """
        Record a refusal and exclude the professional from this attribution.

        Broadcasting carries on for the professionals already notified; a
        refusal never starts a new round.
        """
        attribution_id, professional_id = int(attribution_id), int(professional_id)
        now = timezone.now()
        try:
            with store_errors("Refuse"), transaction.atomic(using=self.using):
                self._require_professional(professional_id)
                attribution = self._locked(attribution_id)
                if not attribution.is_open:
                    raise InvalidTransitionError()
                if not attribution.exclude_professional(professional_id):
                    raise InvalidTransitionError("You have already declined this mission")
                attribution.updated_at = now
                attribution.save(using=self.using, update_fields=["excluded_professional_ids", "updated_at"])
                AttributionResponse.objects.using(self.using).create(
                    attribution=attribution,
                    professional_id=professional_id,
                    response_type=ResponseType.REFUSED,
                    reason=reason or None,
                    responded_at=now,
                )
        except AttributionError as exc:
            logger.info(
                "Refusal of attribution %s by professional %s rejected: %s",
                attribution_id, professional_id, exc.error_code
            )
            return AttributionResult.failure(exc)

        self._record_penalty(self.ledger.record_refusal, professional_id, attribution)
        logger.info("Attribution %s refused by professional %s", attribution_id, professional_id)
        return AttributionResult(success=True, attribution=attribution, message="Refusal recorded")

    def handle_cancel_after_accept(self, attribution_id: int, professional_id: int,
                                   reason: Optional[str] = None) -> AttributionResult:
        """
        Release an accepted mission and re-broadcast it without the canceller.

        The canceller is excluded from this attribution and blacklisted for
        the category. Repeating the call after the release committed but
        before the new round was offered finishes the re-broadcast instead
        of reporting a stale action.
        """
        attribution_id, professional_id = int(attribution_id), int(professional_id)
        now = timezone.now()
        try:
            with store_errors("Cancel"), transaction.atomic(using=self.using):
                attribution = self._locked(attribution_id)
                if attribution.accepted_professional_id == professional_id:
                    self._release(attribution, professional_id, reason, now)
                    resumed = False
                elif self._rebroadcast_pending(attribution, professional_id):
                    resumed = True
                else:
                    raise InvalidTransitionError("You are not assigned to this mission")
        except AttributionError as exc:
            logger.info(
                "Cancellation of attribution %s by professional %s rejected: %s",
                attribution_id, professional_id, exc.error_code
            )
            return AttributionResult.failure(exc)

        self._record_penalty(self.ledger.record_cancellation_after_acceptance, professional_id, attribution)
        if resumed:
            logger.info(
                "Attribution %s: resuming re-broadcast after cancellation by professional %s (round %d)",
                attribution_id, professional_id, attribution.broadcast_count
            )
        else:
            logger.info(
                "Attribution %s cancelled by professional %s, re-broadcasting (round %d)",
                attribution_id, professional_id, attribution.broadcast_count
            )

        with store_errors("Re-broadcast"):
            booking = Booking.objects.using(self.using).get(pk=attribution.booking_id)
        candidates = self._broadcast(attribution, booking)
        with store_errors("Re-broadcast"):
            attribution.refresh_from_db(using=self.using)
        return AttributionResult(
            success=True,
            attribution=attribution,
            message="Mission cancelled and re-broadcast",
            extra={"candidates": len(candidates)},
        )

    def _release(self, attribution: Attribution, professional_id: int,
                 reason: Optional[str], now) -> None:
        updated = self._attributions().filter(
            pk=attribution.id,
            status=AttributionStatus.ACCEPTED,
            accepted_professional_id=professional_id,
        ).update(
            status=AttributionStatus.RE_BROADCASTING,
            accepted_professional=None,
            accepted_at=None,
            broadcast_count=F("broadcast_count") + 1,
            last_broadcast_at=now,
            updated_at=now,
        )
        if not updated:
            raise InvalidTransitionError("This mission can no longer be cancelled")

        attribution.refresh_from_db(using=self.using)
        attribution.exclude_professional(professional_id)
        attribution.save(using=self.using, update_fields=["excluded_professional_ids"])

        Booking.objects.using(self.using).filter(
            pk=attribution.booking_id, professional_id=professional_id
        ).update(professional=None)
        AttributionResponse.objects.using(self.using).create(
            attribution=attribution,
            professional_id=professional_id,
            response_type=ResponseType.CANCELLED,
            reason=reason or None,
            responded_at=now,
        )

    def _rebroadcast_pending(self, attribution: Attribution, professional_id: int) -> bool:
        """True when this professional's cancellation committed but its round was never offered."""
        if attribution.status != AttributionStatus.RE_BROADCASTING:
            return False
        if professional_id not in attribution.excluded_ids:
            return False
        last_response = (
            AttributionResponse.objects.using(self.using)
            .filter(attribution_id=attribution.id, professional_id=professional_id)
            .order_by("-responded_at", "-id")
            .values_list("response_type", flat=True)
            .first()
        )
        return last_response == ResponseType.CANCELLED and not self._round_offered(attribution)

    def _record_penalty(self, record: Callable, professional_id: int, attribution: Attribution) -> None:
        # Ledger rows are updated after the attribution commit; a failed write must not undo it
        try:
            record(professional_id, attribution.category, attribution.id)
        except DataUnavailableError:
            logger.exception(
                "Penalty for professional %s on attribution %s was not recorded",
                professional_id, attribution.id
            )

    # ===================== Expiry & queries =====================

    def expire(self, attribution_id: int) -> bool:
        """Expire an open attribution; returns False (no-op) for any other state."""
        return self._expire(int(attribution_id), "expired by scheduler")

    def _expire(self, attribution_id: int, reason: str) -> bool:
        now = timezone.now()
        with store_errors("Expire"):
            updated = self._attributions().filter(
                pk=attribution_id,
                status__in=OPEN_STATUSES,
            ).update(
                status=AttributionStatus.EXPIRED,
                expired_at=now,
                updated_at=now,
            )
        if updated:
            logger.info("Attribution %s expired: %s", attribution_id, reason)
        return bool(updated)

    def get_status(self, attribution_id: int) -> Attribution:
        """
        Read-only snapshot with booking, winner and response log loaded.

        Raises:
            AttributionNotFoundError: If the attribution does not exist
        """
        with store_errors("Attribution lookup"):
            attribution = (
                self._attributions()
                .select_related("booking", "accepted_professional")
                .prefetch_related("responses__professional")
                .filter(pk=attribution_id)
                .first()
            )
        if attribution is None:
            raise AttributionNotFoundError()
        return attribution

    def get_professional_history(self, professional_id: int, limit: int = 20) -> List[AttributionResponse]:
        """Latest responses of a professional, each with its attribution and booking."""
        with store_errors("History lookup"):
            return list(
                AttributionResponse.objects.using(self.using)
                .filter(professional_id=professional_id)
                .select_related("attribution__booking")
                .order_by("-responded_at", "-id")[:limit]
            )

    # ===================== Helpers =====================

    def _locked(self, attribution_id: int) -> Attribution:
        attribution = self._attributions().select_for_update().filter(pk=attribution_id).first()
        if attribution is None:
            raise AttributionNotFoundError()
        return attribution

    def _require_professional(self, professional_id: int) -> None:
        if not Professional.objects.using(self.using).filter(pk=professional_id).exists():
            raise ProfessionalNotFoundError()


def call_with_single_retry(func: Callable, *args, **kwargs):
    """Run a coordinator call, retrying once when the store is unavailable."""
    try:
        return func(*args, **kwargs)
    except DataUnavailableError as exc:
        logger.warning("%s unavailable, retrying once: %s", getattr(func, "__name__", func), exc)
        return func(*args, **kwargs)
