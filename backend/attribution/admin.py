"""Admin console for attributions, offers, responses and the blacklist"""

from django.contrib import admin, messages

from .models import Attribution, AttributionOffer, AttributionResponse, PenaltyRecord


class AttributionResponseInline(admin.TabularInline):
    model = AttributionResponse
    extra = 0
    can_delete = False
    readonly_fields = ['professional', 'response_type', 'reason', 'responded_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Attribution)
class AttributionAdmin(admin.ModelAdmin):
    """Attribution admin"""
    list_display = ['id', 'booking', 'category', 'status', 'accepted_professional', 'broadcast_count', 'created_at']
    list_filter = ['status', 'category', 'created_at']
    search_fields = ['booking__reference', 'accepted_professional__company_name']
    readonly_fields = [
        'status', 'accepted_professional', 'excluded_professional_ids', 'broadcast_count',
        'created_at', 'updated_at', 'accepted_at', 'last_broadcast_at', 'expired_at',
    ]
    date_hierarchy = 'created_at'
    inlines = [AttributionResponseInline]
    actions = ['expire_attributions']

    @admin.action(description="Expire selected open attributions")
    def expire_attributions(self, request, queryset):
        from services.attribution import AttributionCoordinator

        coordinator = AttributionCoordinator()
        expired = sum(1 for attribution_id in queryset.values_list('id', flat=True)
                      if coordinator.expire(attribution_id))
        self.message_user(request, f"{expired} attribution(s) expired.", messages.SUCCESS)


@admin.register(AttributionOffer)
class AttributionOfferAdmin(admin.ModelAdmin):
    list_display = ("attribution", "professional", "broadcast_round", "distance_km", "status", "sent_at")
    list_filter = ("status",)
    search_fields = ("attribution__id", "professional__company_name")


@admin.register(AttributionResponse)
class AttributionResponseAdmin(admin.ModelAdmin):
    list_display = ("attribution", "professional", "response_type", "responded_at")
    list_filter = ("response_type",)
    search_fields = ("attribution__id", "professional__company_name")
    readonly_fields = ("attribution", "professional", "response_type", "reason", "responded_at")

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(PenaltyRecord)
class PenaltyRecordAdmin(admin.ModelAdmin):
    list_display = [
        'professional', 'category', 'consecutive_refusals', 'total_refusals',
        'blacklisted', 'blacklisted_at', 'last_offence_at',
    ]
    list_filter = ['blacklisted', 'category']
    search_fields = ['professional__company_name', 'professional__email']
    readonly_fields = [
        'consecutive_refusals', 'total_refusals', 'blacklisted', 'blacklisted_at',
        'last_offence_at', 'last_attribution',
    ]
    actions = ['lift_blacklist']

    @admin.action(description="Lift blacklist for selected records")
    def lift_blacklist(self, request, queryset):
        from services.penalties import PenaltyLedger

        ledger = PenaltyLedger()
        lifted = sum(1 for professional_id, category in queryset.values_list('professional_id', 'category')
                     if ledger.lift_manually(professional_id, category))
        self.message_user(request, f"{lifted} blacklist(s) lifted.", messages.SUCCESS)
