from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated

from common.utils.tokens import read_professional_token
from professionals.models import Professional
from professionals.serializers import (
    AvailabilitySerializer,
    LocationUpdateSerializer,
    ProfessionalSerializer,
    ServiceAreaQuerySerializer,
)
from professionals import services
from services.exceptions import DataUnavailableError
from services.matching import GeoMatcher
from services.penalties import PenaltyLedger


# Utility: Ensure the signed token belongs to the professional in the URL
def require_professional(professional_id, token):
    if read_professional_token(token) != professional_id:
        return False, Response({"error": "Invalid or expired token"}, status=403)
    try:
        return True, Professional.objects.get(pk=professional_id)
    except Professional.DoesNotExist:
        return False, Response({"error": "Professional not found"}, status=404)


def unavailable(exc):
    return Response(
        {"error": "data_unavailable", "message": str(exc)},
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


class ProfessionalDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, professional_id):
        try:
            professional = Professional.objects.get(pk=professional_id)
        except Professional.DoesNotExist:
            return Response({"error": "Professional not found"}, status=404)
        return Response(ProfessionalSerializer(professional).data)


#    Professionals also push this over the WebSocket; HTTP stays as fallback.
class ProfessionalLocationView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, professional_id):
        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ok, professional = require_professional(professional_id, serializer.validated_data["token"])
        if ok is False:
            return professional  # Response object

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]
        services.update_professional_coordinates(professional, lat, lon)

        return Response({
            "message": "Location updated",
            "latitude": float(lat),
            "longitude": float(lon),
        })


class ProfessionalAvailabilityView(APIView):
    permission_classes = [AllowAny]

    def put(self, request, professional_id):
        serializer = AvailabilitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        ok, professional = require_professional(professional_id, serializer.validated_data["token"])
        if ok is False:
            return professional

        is_available = serializer.validated_data["is_available"]
        services.set_professional_availability(professional, is_available)

        return Response({
            "message": "Availability updated",
            "is_available": is_available,
        })


class ProfessionalPenaltiesView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, professional_id):
        if not Professional.objects.filter(pk=professional_id).exists():
            return Response({"error": "Professional not found"}, status=404)
        try:
            stats = PenaltyLedger().get_professional_stats(professional_id)
        except DataUnavailableError as exc:
            return unavailable(exc)
        return Response(stats)


class ServiceAreaCheckView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, professional_id):
        serializer = ServiceAreaQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            in_area = GeoMatcher(distance_lookup=None).is_in_service_area(
                professional_id,
                data["latitude"],
                data["longitude"],
                data.get("max_radius_km"),
            )
        except DataUnavailableError as exc:
            return unavailable(exc)
        return Response({"professional_id": professional_id, "in_service_area": in_area})


class PopularServiceAreasView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        try:
            limit = max(1, min(int(request.query_params.get("limit", 20)), 100))
        except ValueError:
            return Response({"error": "limit must be an integer"}, status=400)

        try:
            areas = GeoMatcher(distance_lookup=None).popular_service_areas(limit=limit)
        except DataUnavailableError as exc:
            return unavailable(exc)
        return Response({"areas": areas, "count": len(areas)})
