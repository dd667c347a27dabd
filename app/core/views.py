"""
Core views providing infrastructure endpoints.
"""

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"
        - finance_config: "valid", "defaults" (degraded fallback) or "invalid"

    HTTP Status Codes:
        200: All systems operational
        503: Database unreachable or finance config unusable
    """
    from settlement.fees.config import finance_config_health

    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "finance_config": "unknown",
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    # Cache failure is not critical - mark as degraded but still healthy
    try:
        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") == "ok":
            health_status["cache"] = "connected"
        else:
            health_status["cache"] = "disconnected"
    except Exception:
        health_status["cache"] = "disconnected"

    if is_healthy:
        report = finance_config_health()
        health_status["finance_config"] = report["state"]
        if report["errors"]:
            health_status["finance_config_errors"] = report["errors"]
        if report["state"] == "invalid":
            health_status["status"] = "unhealthy"
            is_healthy = False

    status_code = 200 if is_healthy else 503

    return JsonResponse(health_status, status=status_code)
