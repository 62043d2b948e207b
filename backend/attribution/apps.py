"""Attribution app configuration."""

from django.apps import AppConfig


class AttributionConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'attribution'
    verbose_name = 'Professional attribution'
