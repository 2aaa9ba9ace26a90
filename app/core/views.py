"""
Infrastructure views.

health_check reports database and Redis connectivity. Redis backs the
cache and the refund locks, so losing it degrades the service (refunds
fail with LockAcquisitionError) without taking it down.
"""

import logging

from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and container orchestrators.

    Returns:
        JsonResponse with:
        - status: "healthy", "degraded" (Redis down) or "unhealthy" (database down)
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"

    HTTP Status Codes:
        200: Database reachable (healthy or degraded)
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"

    try:
        cache.set("health_check", "ok", timeout=1)
        cache_ok = cache.get("health_check") == "ok"
    except Exception:
        logger.warning("Health check: cache unreachable", exc_info=True)
        cache_ok = False
    health_status["cache"] = "connected" if cache_ok else "disconnected"

    if health_status["database"] != "connected":
        health_status["status"] = "unhealthy"
        return JsonResponse(health_status, status=503)
    if not cache_ok:
        health_status["status"] = "degraded"
    return JsonResponse(health_status, status=200)
