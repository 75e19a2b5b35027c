# leadflow/routes/health.py
"""
Health check endpoints. Readiness only probes the backends the current
configuration actually uses.
"""

import time

from fastapi import APIRouter, Response, status

from leadflow.config import settings
from leadflow.db.pool import db_health_check
from leadflow.services.redis_client import fast_redis

router = APIRouter()


@router.get("/health")
async def health():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "leadflow"}


@router.get("/health/ready")
async def readiness(response: Response):
    """Readiness check across the configured storage backends."""
    checks = {}
    overall_ok = True

    if settings.uses_postgres():
        t0 = time.time()
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    else:
        checks["database"] = {"ok": True, "backend": "memory"}

    if settings.uses_redis_ignored_senders():
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok

    config_issues = []
    if not settings.JWT_JWKS_URL:
        config_issues.append("JWT_JWKS_URL not set")
    if settings.uses_postgres() and not settings.ENCRYPTION_KEY:
        config_issues.append("ENCRYPTION_KEY not set")
    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "store_backend": settings.STORE_BACKEND,
        "ignored_sender_backend": settings.IGNORED_SENDER_BACKEND,
    }
    overall_ok = overall_ok and not config_issues

    if not overall_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
