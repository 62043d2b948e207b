"""
Realtime app for WebSocket communication with professionals.

This app provides:
- A WebSocket consumer through which professionals receive offers
- Signed-token authentication middleware for WebSocket connections
- Notification helpers for sending attribution events to professional groups

Key Components:
    - consumers/: WebSocket consumers (base, professional)
    - middleware.py: token authentication
    - notifications.py: attribution event helpers

Usage:
    from realtime.consumers import ProfessionalConsumer
    from realtime.notifications import send_professional_event_async
"""
