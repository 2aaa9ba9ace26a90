# =============================================================================
# Clinic Billing Project Configuration
# =============================================================================
# Settings, URL routing, ASGI/WSGI entry points and the Celery app.
#
# The Celery app is imported here so that billing.tasks (emails,
# reconciliation, the stale-payment sweep) register when Django starts.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
