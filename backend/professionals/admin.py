from django.contrib import admin
from professionals.models import Professional


@admin.register(Professional)
class ProfessionalAdmin(admin.ModelAdmin):
    """Admin panel for managing the professional registry"""

    list_display = [
        "company_name",
        "business_type",
        "city",
        "verified",
        "is_available",
        "max_distance_km",
        "last_location_update",
    ]

    list_filter = [
        "business_type",
        "verified",
        "is_available",
    ]

    search_fields = [
        "company_name",
        "email",
        "city",
        "postal_code",
    ]

    readonly_fields = [
        "last_location_update",
        "created_at",
        "updated_at",
    ]

    ordering = ("company_name",)
