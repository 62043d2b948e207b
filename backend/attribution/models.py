from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.utils.categories import ServiceCategory


class AttributionStatus(models.TextChoices):
    BROADCASTING = 'BROADCASTING', 'Broadcasting'
    RE_BROADCASTING = 'RE_BROADCASTING', 'Re-broadcasting'
    ACCEPTED = 'ACCEPTED', 'Accepted'
    EXPIRED = 'EXPIRED', 'Expired'


# Statuses in which any eligible professional may still accept
OPEN_STATUSES = (AttributionStatus.BROADCASTING, AttributionStatus.RE_BROADCASTING)

# A booking has at most one attribution in these statuses
ACTIVE_STATUSES = OPEN_STATUSES + (AttributionStatus.ACCEPTED,)


class Attribution(models.Model):
    """One dispatch attempt of a booking to the professional pool."""

    booking = models.ForeignKey(
        'bookings.Booking',
        on_delete=models.CASCADE,
        related_name='attributions'
    )
    category = models.CharField(max_length=30, choices=ServiceCategory.choices)
    status = models.CharField(
        max_length=20,
        choices=AttributionStatus.choices,
        default=AttributionStatus.BROADCASTING,
    )

    # Target location & search radius
    latitude = models.DecimalField(max_digits=9, decimal_places=6)
    longitude = models.DecimalField(max_digits=9, decimal_places=6)
    max_radius_km = models.FloatField(default=150)

    accepted_professional = models.ForeignKey(
        'professionals.Professional',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='accepted_attributions'
    )

    # Professionals who must not receive further offers for this attempt (grows only)
    excluded_professional_ids = models.JSONField(default=list, blank=True)
    broadcast_count = models.PositiveIntegerField(default=0)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(default=timezone.now)
    accepted_at = models.DateTimeField(null=True, blank=True)
    last_broadcast_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'booking_attributions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='attribution_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(status=AttributionStatus.ACCEPTED, accepted_professional__isnull=False)
                    | (~Q(status=AttributionStatus.ACCEPTED) & Q(accepted_professional__isnull=True))
                ),
                name='accepted_professional_iff_accepted',
            ),
            models.UniqueConstraint(
                fields=['booking'],
                condition=Q(status__in=list(ACTIVE_STATUSES)),
                name='one_active_attribution_per_booking',
            ),
        ]

    def __str__(self):
        return f"Attribution #{self.id} - Booking {self.booking_id} - {self.status}"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def excluded_ids(self) -> set:
        return {int(pid) for pid in (self.excluded_professional_ids or [])}

    def exclude_professional(self, professional_id: int) -> bool:
        """Add a professional to the exclusion list; returns False if already there."""
        professional_id = int(professional_id)
        current = [int(pid) for pid in (self.excluded_professional_ids or [])]
        if professional_id in current:
            return False
        self.excluded_professional_ids = current + [professional_id]
        return True


class AttributionOffer(models.Model):
    """Tracks which professionals received the offer, per broadcast round."""

    STATUS_CHOICES = [
        ('sent', 'Sent'),
        ('failed', 'Delivery failed'),
    ]

    attribution = models.ForeignKey(
        Attribution,
        on_delete=models.CASCADE,
        related_name='offers'
    )
    professional = models.ForeignKey(
        'professionals.Professional',
        on_delete=models.CASCADE,
        related_name='attribution_offers'
    )
    broadcast_round = models.PositiveIntegerField(default=1)
    distance_km = models.FloatField()
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default='sent')
    error = models.TextField(blank=True)
    sent_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['broadcast_round', 'distance_km']
        constraints = [
            models.UniqueConstraint(
                fields=['attribution', 'professional', 'broadcast_round'],
                name='unique_attribution_offer_round'
            )
        ]

    def __str__(self):
        return f"Offer #{self.id} - Attribution {self.attribution_id} -> Professional {self.professional_id}"


class AttributionResponse(models.Model):
    """Append-only log of a professional's reply to an attribution."""

    class ResponseType(models.TextChoices):
        ACCEPTED = 'ACCEPTED', 'Accepted'
        REFUSED = 'REFUSED', 'Refused'
        CANCELLED = 'CANCELLED', 'Cancelled after acceptance'

    attribution = models.ForeignKey(
        Attribution,
        on_delete=models.CASCADE,
        related_name='responses'
    )
    professional = models.ForeignKey(
        'professionals.Professional',
        on_delete=models.CASCADE,
        related_name='attribution_responses'
    )
    response_type = models.CharField(max_length=10, choices=ResponseType.choices)
    reason = models.TextField(null=True, blank=True)
    responded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'attribution_responses'
        ordering = ['-responded_at', '-id']

    def __str__(self):
        return f"{self.response_type} by {self.professional_id} on attribution {self.attribution_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None and not kwargs.get('force_insert'):
            raise ValueError("Attribution responses are append-only")
        super().save(*args, **kwargs)


class PenaltyRecord(models.Model):
    """Refusal/cancellation counters and blacklist flag of one (professional, category) pair."""

    professional = models.ForeignKey(
        'professionals.Professional',
        on_delete=models.CASCADE,
        related_name='penalty_records'
    )
    category = models.CharField(max_length=30, choices=ServiceCategory.choices)

    consecutive_refusals = models.PositiveIntegerField(default=0)
    total_refusals = models.PositiveIntegerField(default=0)

    blacklisted = models.BooleanField(default=False)
    blacklisted_at = models.DateTimeField(null=True, blank=True)
    last_offence_at = models.DateTimeField(null=True, blank=True)
    last_attribution = models.ForeignKey(
        Attribution,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'professional_penalties'
        ordering = ['-blacklisted_at', 'professional_id']
        constraints = [
            models.UniqueConstraint(
                fields=['professional', 'category'],
                name='unique_professional_category_penalty'
            )
        ]

    def __str__(self):
        flag = "blacklisted" if self.blacklisted else "ok"
        return f"Penalty {self.professional_id}/{self.category} ({self.consecutive_refusals}, {flag})"
