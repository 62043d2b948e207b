from django.contrib import admin
from bookings.models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "display_reference",
        "service_type",
        "status",
        "scheduled_date",
        "total_amount",
        "professional",
    ]
    list_filter = ["service_type", "status"]
    search_fields = ["reference", "customer_last_name", "customer_email"]
    raw_id_fields = ["professional"]
