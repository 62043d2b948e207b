"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.professional_consumer import ProfessionalConsumer

websocket_urlpatterns = [
    # Professional endpoint: offers, taken/confirmed events, location updates
    # URL: ws://localhost:8000/ws/professional/?token=<signed token>
    re_path(
        r"ws/professional/$",
        ProfessionalConsumer.as_asgi(),
        name="professional-ws"
    ),
]
