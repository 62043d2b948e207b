import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated

from common.utils.tokens import verify_response_token
from professionals.models import Professional
from services.attribution import AttributionCoordinator, call_with_single_retry
from services.exceptions import AttributionError, DataUnavailableError, NotFoundError
from .serializers import (
    AttributionSerializer,
    AttributionStartSerializer,
    ProfessionalActionSerializer,
    ProfessionalHistorySerializer,
)

logger = logging.getLogger(__name__)


def get_coordinator() -> AttributionCoordinator:
    return AttributionCoordinator()


def _unavailable(exc):
    logger.error("Attribution store unavailable: %s", exc)
    return Response(
        {'success': False, 'error': DataUnavailableError.error_code, 'message': 'Service temporarily unavailable'},
        status=status.HTTP_503_SERVICE_UNAVAILABLE
    )


def _error(exc: AttributionError):
    code = status.HTTP_404_NOT_FOUND if isinstance(exc, NotFoundError) else status.HTTP_409_CONFLICT
    return Response({'success': False, 'error': exc.error_code, 'message': exc.message}, status=code)


def _result_response(result):
    """Map an AttributionResult onto an HTTP response."""
    if not result.success:
        code = status.HTTP_404_NOT_FOUND if result.error_code == NotFoundError.error_code else status.HTTP_409_CONFLICT
        return Response(
            {'success': False, 'error': result.error_code, 'message': result.message},
            status=code
        )

    body = {
        'success': True,
        'message': result.message,
        'attribution': AttributionSerializer(result.attribution).data,
    }
    body.update(result.extra or {})
    return Response(body, status=status.HTTP_200_OK)


def _confirmation(attribution_id, professional_id, token):
    """
    Answer a GET on a signed offer link without changing anything.

    Link scanners prefetch the URLs found in offers, so only the POST sent
    back with the same parameters applies the action.
    """
    try:
        attribution = get_coordinator().get_status(attribution_id)
    except AttributionError as exc:
        return _error(exc)
    except DataUnavailableError as exc:
        return _unavailable(exc)

    return Response({
        'success': True,
        'confirmation_required': True,
        'attribution_id': attribution.id,
        'professional_id': professional_id,
        'status': attribution.status,
        'is_open': attribution.is_open,
        'token': token,
        'message': 'Send this request again as POST to confirm',
    })


def _professional_action(request, attribution_id, handler_name, with_reason=False):
    """Validate a signed professional action and run it through the coordinator."""
    payload = request.data if request.method == 'POST' else request.query_params
    serializer = ProfessionalActionSerializer(data=payload)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    professional_id = serializer.validated_data['professional_id']
    if not verify_response_token(serializer.validated_data['token'], attribution_id, professional_id):
        return Response(
            {'success': False, 'error': 'invalid_token', 'message': 'Invalid or expired link'},
            status=status.HTTP_403_FORBIDDEN
        )

    if request.method == 'GET':
        return _confirmation(attribution_id, professional_id, serializer.validated_data['token'])

    handler = getattr(get_coordinator(), handler_name)
    args = [attribution_id, professional_id]
    if with_reason:
        args.append(serializer.validated_data.get('reason'))

    try:
        result = call_with_single_retry(handler, *args)
    except DataUnavailableError as exc:
        return _unavailable(exc)
    return _result_response(result)


# ==================== Booking side ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def start_attribution(request):
    """Start broadcasting a paid booking to eligible professionals"""
    serializer = AttributionStartSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    coordinator = get_coordinator()
    try:
        attribution_id = coordinator.start(
            data['booking_id'],
            data['category'],
            data['latitude'],
            data['longitude'],
            data.get('max_radius_km'),
        )
        attribution = coordinator.get_status(attribution_id)
    except AttributionError as exc:
        return _error(exc)
    except DataUnavailableError as exc:
        return _unavailable(exc)

    candidates = attribution.offers.filter(broadcast_round=attribution.broadcast_count).count()
    return Response({
        'attribution_id': attribution.id,
        'status': attribution.status,
        'candidates': candidates,
        'message': (
            'Offer sent to nearby professionals'
            if candidates
            else 'No eligible professional found'
        ),
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_attribution(request, attribution_id):
    """Read-only snapshot of an attribution with its response log"""
    try:
        attribution = get_coordinator().get_status(attribution_id)
    except AttributionError as exc:
        return _error(exc)
    except DataUnavailableError as exc:
        return _unavailable(exc)
    return Response(AttributionSerializer(attribution).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def professional_history(request, professional_id):
    """Latest responses of one professional"""
    if not Professional.objects.filter(pk=professional_id).exists():
        return Response({'error': 'not_found', 'message': 'Professional not found'}, status=status.HTTP_404_NOT_FOUND)

    try:
        limit = max(1, min(int(request.query_params.get('limit', 20)), 100))
    except ValueError:
        return Response({'error': 'limit must be an integer'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        responses = get_coordinator().get_professional_history(professional_id, limit=limit)
    except DataUnavailableError as exc:
        return _unavailable(exc)

    return Response({
        'professional_id': professional_id,
        'responses': ProfessionalHistorySerializer(responses, many=True).data,
        'count': len(responses),
    })


# ==================== Professional actions (signed links) ====================

@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def accept_attribution(request, attribution_id):
    """Professional accepts the mission (POST); the first acceptance wins"""
    return _professional_action(request, attribution_id, 'handle_accept')


@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def refuse_attribution(request, attribution_id):
    """Professional declines the mission (POST)"""
    return _professional_action(request, attribution_id, 'handle_refuse', with_reason=True)


@api_view(['POST'])
@permission_classes([AllowAny])
def cancel_attribution(request, attribution_id):
    """Accepted professional backs out; the mission is re-broadcast"""
    return _professional_action(request, attribution_id, 'handle_cancel_after_accept', with_reason=True)
