"""
Celery configuration for the clinic billing backend.

Celery runs the work that must not block a request:
- Payment confirmation / failure emails (queued on transaction commit)
- Gateway reconciliation of payments stuck in PROCESSING
- The periodic stale-payment sweep (scheduled by django-celery-beat)

Redis is both the message broker and result backend. Tasks are
auto-discovered from every installed app's tasks.py.
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
