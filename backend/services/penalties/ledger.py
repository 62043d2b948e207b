"""
Per-category refusal ledger and blacklist.

One PenaltyRecord per (professional, category), created lazily on the first
offence. Two consecutive refusals blacklist the pair; a cancellation after
acceptance blacklists it immediately. Nothing expires on its own: the flag
clears on the next acceptance in that category or through an admin lift.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from attribution.models import PenaltyRecord
from services.exceptions import store_errors

logger = logging.getLogger(__name__)


class PenaltyLedger:
    """Penalty counters and blacklist flags, routed through one database alias."""

    def __init__(self, using: str = "default", threshold: Optional[int] = None):
        self.using = using
        if threshold is None:
            threshold = settings.ATTRIBUTION_BLACKLIST_THRESHOLD
        self.threshold = int(threshold)

    def _records(self):
        return PenaltyRecord.objects.using(self.using)

    def _locked_record(self, professional_id: int, category: str) -> PenaltyRecord:
        record, _ = self._records().select_for_update().get_or_create(
            professional_id=professional_id,
            category=category,
        )
        return record

    def record_refusal(self, professional_id: int, category: str,
                       attribution_id: Optional[int] = None) -> PenaltyRecord:
        """Count one refusal; blacklist the pair once the threshold is reached."""
        now = timezone.now()
        with store_errors("Penalty update"), transaction.atomic(using=self.using):
            record = self._locked_record(professional_id, category)
            self._records().filter(pk=record.pk).update(
                consecutive_refusals=F("consecutive_refusals") + 1,
                total_refusals=F("total_refusals") + 1,
                last_offence_at=now,
                last_attribution_id=attribution_id,
            )
            record.refresh_from_db(using=self.using)

            if record.consecutive_refusals >= self.threshold and not record.blacklisted:
                record.blacklisted = True
                record.blacklisted_at = now
                record.save(using=self.using, update_fields=["blacklisted", "blacklisted_at", "updated_at"])
                logger.info(
                    "Professional %s blacklisted for %s after %d consecutive refusals",
                    professional_id, category, record.consecutive_refusals
                )

        logger.info(
            "Refusal recorded for professional %s (%s): consecutive=%d total=%d",
            professional_id, category, record.consecutive_refusals, record.total_refusals
        )
        return record

    def record_cancellation_after_acceptance(self, professional_id: int, category: str,
                                             attribution_id: Optional[int] = None) -> PenaltyRecord:
        """Blacklist the pair immediately, raising the consecutive counter to the threshold."""
        now = timezone.now()
        with store_errors("Penalty update"), transaction.atomic(using=self.using):
            record = self._locked_record(professional_id, category)
            record.consecutive_refusals = max(self.threshold, record.consecutive_refusals)
            record.blacklisted = True
            record.blacklisted_at = now
            record.last_offence_at = now
            record.last_attribution_id = attribution_id
            record.save(using=self.using)

        logger.info("Professional %s blacklisted for %s after cancelling an accepted mission",
                    professional_id, category)
        return record

    def reset_on_acceptance(self, professional_id: int, category: str) -> None:
        """Zero the consecutive counter and clear the flag; the lifetime counter is kept."""
        with store_errors("Penalty update"):
            updated = self._records().filter(
                professional_id=professional_id,
                category=category,
            ).update(
                consecutive_refusals=0,
                blacklisted=False,
                blacklisted_at=None,
                updated_at=timezone.now(),
            )
        if updated:
            logger.info("Penalty counters reset for professional %s (%s)", professional_id, category)

    def lift_manually(self, professional_id: int, category: str) -> bool:
        """Administrative override; returns True if a blacklist was lifted."""
        with store_errors("Penalty update"):
            updated = self._records().filter(
                professional_id=professional_id,
                category=category,
                blacklisted=True,
            ).update(
                consecutive_refusals=0,
                blacklisted=False,
                blacklisted_at=None,
                updated_at=timezone.now(),
            )
        if updated:
            logger.info("Blacklist lifted manually for professional %s (%s)", professional_id, category)
        return bool(updated)

    def get_blacklisted(self, category: str) -> Set[int]:
        with store_errors("Blacklist lookup"):
            return set(
                self._records()
                .filter(category=category, blacklisted=True)
                .values_list("professional_id", flat=True)
            )

    def is_blacklisted(self, professional_id: int, category: str) -> bool:
        with store_errors("Blacklist lookup"):
            return self._records().filter(
                professional_id=professional_id,
                category=category,
                blacklisted=True,
            ).exists()

    def get_professional_stats(self, professional_id: int) -> Dict[str, Any]:
        """Penalty summary of one professional across all categories."""
        with store_errors("Penalty lookup"):
            records = list(
                self._records()
                .filter(professional_id=professional_id)
                .select_related("professional")
                .order_by("category")
            )

        entries = [
            {
                "category": record.category,
                "consecutive_refusals": record.consecutive_refusals,
                "total_refusals": record.total_refusals,
                "blacklisted": record.blacklisted,
                "blacklisted_at": record.blacklisted_at,
                "last_offence_at": record.last_offence_at,
            }
            for record in records
        ]
        return {
            "professional_id": professional_id,
            "company_name": records[0].professional.company_name if records else None,
            "entries": entries,
            "total_categories": len(entries),
            "active_blacklists": sum(1 for entry in entries if entry["blacklisted"]),
        }

    def list_blacklisted(self) -> List[PenaltyRecord]:
        """All blacklisted pairs, most recent first."""
        with store_errors("Blacklist lookup"):
            return list(
                self._records()
                .filter(blacklisted=True)
                .select_related("professional")
                .order_by("-blacklisted_at")
            )
