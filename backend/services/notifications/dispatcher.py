"""
Outbound offer notifications.

Broadcasting is a fan-out: each recipient is sent independently and the
result is a per-recipient outcome, so one failed delivery never prevents
the others.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from asgiref.sync import async_to_sync

from common.utils.tokens import build_response_urls
from realtime.notifications import (
    CONFIRMED_EVENT,
    OFFER_EVENT,
    TAKEN_EVENT,
    send_professional_event_async,
)
from services.exceptions import PartialDeliveryFailure

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    """Delivery result for one recipient."""
    professional_id: int
    delivered: bool
    error: Optional[str] = None


@dataclass
class BroadcastReport:
    attribution_id: int
    outcomes: List[DeliveryOutcome] = field(default_factory=list)

    @property
    def delivered(self) -> List[DeliveryOutcome]:
        return [outcome for outcome in self.outcomes if outcome.delivered]

    @property
    def failed(self) -> List[DeliveryOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.delivered]

    def raise_for_failures(self) -> None:
        """Raise PartialDeliveryFailure if any recipient was not reached."""
        if self.failed:
            raise PartialDeliveryFailure(self)


class NotificationDispatcher:
    """Interface used by the attribution coordinator."""

    def broadcast(self, attribution_id: int, candidates: Sequence, summary) -> BroadcastReport:
        raise NotImplementedError

    def notify_taken(self, attribution_id: int, winner_id: int,
                     recipient_ids: Iterable[int] = ()) -> BroadcastReport:
        raise NotImplementedError


class ChannelsNotificationDispatcher(NotificationDispatcher):
    """Pushes offers to professionals' WebSocket groups."""

    def broadcast(self, attribution_id: int, candidates: Sequence, summary) -> BroadcastReport:
        return async_to_sync(self._broadcast)(attribution_id, list(candidates), summary)

    def notify_taken(self, attribution_id: int, winner_id: int,
                     recipient_ids: Iterable[int] = ()) -> BroadcastReport:
        losers = sorted({int(pid) for pid in recipient_ids} - {int(winner_id)})
        return async_to_sync(self._notify_taken)(attribution_id, int(winner_id), losers)

    async def _broadcast(self, attribution_id, candidates, summary) -> BroadcastReport:
        mission = summary.as_dict() if summary is not None else {}
        results = await asyncio.gather(
            *(self._send_offer(attribution_id, candidate, mission) for candidate in candidates),
            return_exceptions=True,
        )
        report = self._collect(attribution_id, [candidate.id for candidate in candidates], results)
        logger.info(
            "Offer for attribution %s delivered to %d/%d professionals",
            attribution_id, len(report.delivered), len(report.outcomes)
        )
        return report

    async def _send_offer(self, attribution_id, candidate, mission) -> None:
        links = build_response_urls(attribution_id, candidate.id)
        await send_professional_event_async(
            OFFER_EVENT,
            candidate.id,
            attribution_id,
            message="New mission available",
            extra={
                "mission": mission,
                "distance_km": candidate.distance_km,
                "accept_url": links["accept_url"],
                "refuse_url": links["refuse_url"],
                "token": links["token"],
            },
        )

    async def _notify_taken(self, attribution_id, winner_id, losers) -> BroadcastReport:
        sends = [
            send_professional_event_async(
                CONFIRMED_EVENT, winner_id, attribution_id,
                message="The mission is yours",
            )
        ]
        sends.extend(
            send_professional_event_async(
                TAKEN_EVENT, professional_id, attribution_id,
                message="This mission is no longer available",
            )
            for professional_id in losers
        )
        results = await asyncio.gather(*sends, return_exceptions=True)
        return self._collect(attribution_id, [winner_id] + losers, results)

    @staticmethod
    def _collect(attribution_id, professional_ids, results) -> BroadcastReport:
        outcomes = []
        for professional_id, result in zip(professional_ids, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Notification to professional %s for attribution %s failed: %s",
                    professional_id, attribution_id, result
                )
                outcomes.append(DeliveryOutcome(professional_id, False, str(result)))
            else:
                outcomes.append(DeliveryOutcome(professional_id, True))
        return BroadcastReport(attribution_id, outcomes)
