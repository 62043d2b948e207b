import redis
from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework import status
from channels.layers import get_channel_layer

from attribution.models import OPEN_STATUSES, Attribution


def _check_database():
    open_count = Attribution.objects.filter(status__in=OPEN_STATUSES).count()
    return {"status": "healthy", "open_attributions": open_count}


def _check_redis():
    client = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
    client.ping()
    return {"status": "healthy"}


def _check_channel_layer():
    layer = get_channel_layer()
    if layer is None:
        return {"status": "unhealthy", "error": "no channel layer configured"}
    return {"status": "healthy", "backend": type(layer).__name__}


CHECKS = {
    "database": (_check_database, (DatabaseError,)),
    "redis": (_check_redis, (redis.RedisError,)),
    "channels": (_check_channel_layer, (redis.RedisError, ValueError)),
}


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Health check endpoint used by the load balancer and uptime monitors"""
    services = {}
    for name, (check, errors) in CHECKS.items():
        try:
            services[name] = check()
        except errors as e:
            services[name] = {"status": "unhealthy", "error": str(e)}

    healthy = all(result["status"] == "healthy" for result in services.values())
    return Response(
        {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": timezone.now().isoformat(),
            "services": services,
        },
        status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
