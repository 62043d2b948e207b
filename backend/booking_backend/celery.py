"""Celery application for background attribution work (start after payment, stale expiry)."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "booking_backend.settings.settings")

app = Celery("booking_backend")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
