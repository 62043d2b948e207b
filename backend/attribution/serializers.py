from rest_framework import serializers

from common.utils.categories import ServiceCategory, normalize_service_category
from professionals.serializers import ProfessionalBasicSerializer
from .models import Attribution, AttributionResponse


class AttributionResponseSerializer(serializers.ModelSerializer):
    """Serializer for one entry of the response log"""
    professional_id = serializers.IntegerField(read_only=True)
    company_name = serializers.CharField(source="professional.company_name", read_only=True)

    class Meta:
        model = AttributionResponse
        fields = [
            "id",
            "professional_id",
            "company_name",
            "response_type",
            "reason",
            "responded_at",
        ]
        read_only_fields = fields


class AttributionSerializer(serializers.ModelSerializer):
    """Snapshot of an attribution with its winner and response log"""
    booking_id = serializers.IntegerField(read_only=True)
    booking_reference = serializers.CharField(source="booking.display_reference", read_only=True)
    accepted_professional = ProfessionalBasicSerializer(read_only=True)
    responses = AttributionResponseSerializer(many=True, read_only=True)

    class Meta:
        model = Attribution
        fields = [
            "id",
            "booking_id",
            "booking_reference",
            "category",
            "status",
            "latitude",
            "longitude",
            "max_radius_km",
            "accepted_professional",
            "excluded_professional_ids",
            "broadcast_count",
            "created_at",
            "updated_at",
            "accepted_at",
            "last_broadcast_at",
            "expired_at",
            "responses",
        ]
        read_only_fields = fields


class AttributionSummarySerializer(serializers.ModelSerializer):
    """Serializer for attribution outcomes, without the response log"""
    booking_reference = serializers.CharField(source="booking.display_reference", read_only=True)
    accepted_professional_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Attribution
        fields = [
            "id",
            "booking_id",
            "booking_reference",
            "category",
            "status",
            "accepted_professional_id",
            "broadcast_count",
        ]
        read_only_fields = fields


class ProfessionalHistorySerializer(serializers.ModelSerializer):
    """A professional's response together with the attribution it answered"""
    attribution = AttributionSummarySerializer(read_only=True)
    scheduled_date = serializers.DateTimeField(source="attribution.booking.scheduled_date", read_only=True)

    class Meta:
        model = AttributionResponse
        fields = [
            "id",
            "response_type",
            "reason",
            "responded_at",
            "scheduled_date",
            "attribution",
        ]
        read_only_fields = fields


class AttributionStartSerializer(serializers.Serializer):
    """Serializer for starting the attribution of a paid booking"""
    booking_id = serializers.IntegerField(min_value=1)
    category = serializers.CharField(max_length=30)
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    max_radius_km = serializers.FloatField(required=False, min_value=0.1)

    def validate_category(self, value):
        category = normalize_service_category(value)
        if category == ServiceCategory.SERVICE and value.strip().upper() not in ("SERVICE", "CUSTOM", "PACK"):
            raise serializers.ValidationError(f"Unknown service category: {value}")
        return str(category)


class ProfessionalActionSerializer(serializers.Serializer):
    """Serializer for accept / refuse / cancel requests coming from offer links"""
    professional_id = serializers.IntegerField(min_value=1)
    token = serializers.CharField()
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000)
