"""
Core views providing infrastructure endpoints and API error rendering.

- health_check: liveness/readiness probe covering database, cache and
  channel layer
- api_exception_handler: DRF EXCEPTION_HANDLER that renders
  core.exceptions errors with their own status codes
"""

import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"
        - channel_layer: "connected", "disconnected" or "not_configured"

    HTTP Status Codes:
        200: Database reachable (cache and channel layer may be degraded)
        503: Database unreachable
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "channel_layer": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # Presence and typing degrade to "offline"/"not typing" without the cache,
    # so cache trouble does not fail the probe.
    try:
        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        logger.exception("Health check: cache unreachable")
        health_status["cache"] = "disconnected"

    channel_layer = get_channel_layer()
    if channel_layer is None:
        health_status["channel_layer"] = "not_configured"
    else:
        try:
            async_to_sync(channel_layer.group_send)(
                "health_check", {"type": "health.ping"}
            )
            health_status["channel_layer"] = "connected"
        except Exception:
            logger.exception("Health check: channel layer unreachable")
            health_status["channel_layer"] = "disconnected"

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)


def api_exception_handler(exc, context):
    """
    Render application errors raised by services.

    Falls through to DRF's default handler for everything else, so
    serializer validation and authentication errors keep their usual shape.
    """
    if isinstance(exc, BaseApplicationError):
        if exc.status_code >= 500:
            logger.error("Unhandled service error in %s: %r", context.get("view"), exc)
        return Response(exc.to_dict(), status=exc.status_code)
    return exception_handler(exc, context)
