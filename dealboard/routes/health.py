"""
Health check endpoints with cache backing monitoring.
"""

import time

from fastapi import APIRouter, Depends

from dealboard.routes.dependencies import get_container
from dealboard.services.container import ServiceContainer

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "dealboard"}


@router.get("/readyz")
async def readyz(container: ServiceContainer = Depends(get_container)):
    """Readiness check covering the cache backing and configuration."""
    checks = {}
    overall_ok = True

    # 1) Cache backing
    t0 = time.time()
    try:
        backing_health = await container.backing.health_check()
        is_healthy = backing_health.get("healthy", False)
        checks["cache_backing"] = {
            "ok": is_healthy,
            "backing": container.backing.name,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not is_healthy:
            checks["cache_backing"]["error"] = backing_health.get("error", "Cache backing unhealthy")
        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["cache_backing"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Configuration
    config_issues = []
    if not container.config.CRM_ACCESS_TOKEN:
        config_issues.append("CRM_ACCESS_TOKEN not set")
    if not container.config.OPENAI_API_KEY:
        config_issues.append("OPENAI_API_KEY not set")

    config_ok = not config_issues
    checks["configuration"] = {
        "ok": config_ok,
        "issues": config_issues if config_issues else None,
        "environment": container.config.environment,
    }
    overall_ok = overall_ok and config_ok

    # 3) Reconciliation state (informational)
    checks["reconciliation"] = {
        "state": container.controller.state.value,
        "last_error": container.controller.last_error,
    }

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
