"""
Health endpoints for load balancers and orchestrators.

The database is required; Redis is optional because rate limiting falls back
to in-memory counters.
"""
import os
import time
import logging
from datetime import datetime, timezone
from typing import Callable

import redis
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..models import HealthStatus
from ..deps import get_db, get_redis_client
from ...auth.errors import StoreError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

VERSION = os.getenv("APP_VERSION", "0.1.0")


def _timed_ping(ping: Callable[[], object]) -> str:
    """Run ``ping`` and describe it as ``healthy (1.2ms)``."""
    started = time.perf_counter()
    ping()
    return f"healthy ({(time.perf_counter() - started) * 1000:.1f}ms)"


@router.get("", response_model=HealthStatus)
def health_check():
    """Database and Redis status. Only the database decides overall health."""
    services = {}
    healthy = True

    try:
        services["database"] = _timed_ping(get_db().ping)
    except StoreError as e:
        services["database"] = f"unhealthy: {e.detail}"
        healthy = False

    redis_client = get_redis_client()
    if redis_client is None:
        services["redis"] = "fallback_mode (in-memory)"
    else:
        try:
            services["redis"] = _timed_ping(redis_client.ping)
        except redis.RedisError as e:
            services["redis"] = f"unhealthy: {e}"

    return HealthStatus(
        status="healthy" if healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
def liveness():
    """The process is up."""
    return {"status": "alive"}


@router.get("/ready")
def readiness():
    """200 when the database answers, 503 otherwise."""
    try:
        get_db().ping()
    except StoreError as e:
        logger.error(f"Readiness check failed: {e.detail}")
        return JSONResponse(status_code=503, content={"status": "not ready"})
    return {"status": "ready"}
