from decimal import Decimal

from rest_framework import serializers

from professionals.models import Professional


class ProfessionalSerializer(serializers.ModelSerializer):
    """
    Full professional profile serializer
    """

    class Meta:
        model = Professional
        fields = [
            "id",
            "company_name",
            "business_type",
            "email",
            "phone",
            "city",
            "postal_code",
            "latitude",
            "longitude",
            "last_location_update",
            "service_categories",
            "max_distance_km",
            "verified",
            "is_available",
        ]
        read_only_fields = ["id", "last_location_update", "verified"]


class ProfessionalBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of professional info embedded in attribution snapshots.
    """

    class Meta:
        model = Professional
        fields = [
            "id",
            "company_name",
            "email",
            "phone",
            "city",
        ]


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating a professional's registered coordinates.
    """
    token = serializers.CharField()
    latitude = serializers.DecimalField(max_digits=10, decimal_places=6, min_value=Decimal("-90"), max_value=Decimal("90"))
    longitude = serializers.DecimalField(max_digits=10, decimal_places=6, min_value=Decimal("-180"), max_value=Decimal("180"))


class AvailabilitySerializer(serializers.Serializer):
    token = serializers.CharField()
    is_available = serializers.BooleanField()


class ServiceAreaQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    max_radius_km = serializers.FloatField(min_value=0.1, required=False)
