"""
Django app configuration for toolkit.

Registered as an app so the template loader and test discovery see it;
it defines no models.
"""

from django.apps import AppConfig


class ToolkitConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "toolkit"
    verbose_name = "Shared Toolkit"
