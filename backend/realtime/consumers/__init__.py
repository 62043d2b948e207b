"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .professional_consumer import ProfessionalConsumer

__all__ = [
    "BaseConsumer",
    "ProfessionalConsumer",
]
