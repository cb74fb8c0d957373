"""Health check endpoints for Gatekeeper.

- /health: Basic health check
- /health/ready: Readiness probe (database and Redis reachable)
"""

from typing import Dict, Any
from datetime import datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
import redis

from gatekeeper import __version__
from gatekeeper.api.deps import get_db
from gatekeeper.core.config import get_settings

router = APIRouter(tags=["health"])


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity."""
    try:
        db.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


def check_redis() -> Dict[str, Any]:
    """Check Redis connectivity (Celery broker)."""
    try:
        r = redis.from_url(
            get_settings().redis_url,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        r.ping()
        r.close()
        return {"status": "healthy"}
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


@router.get("/health")
async def health_check():
    """Returns 200 if the application is running."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_probe(db: Session = Depends(get_db)):
    """
    Readiness probe.

    Failure means traffic should not be routed to this instance.
    """
    checks = {
        "database": check_database(db),
        "redis": check_redis(),
    }
    unhealthy = [name for name, check in checks.items() if check["status"] == "unhealthy"]

    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE if unhealthy else status.HTTP_200_OK,
        content={
            "status": "not_ready" if unhealthy else "ready",
            "checks": checks,
            "failed": unhealthy,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
