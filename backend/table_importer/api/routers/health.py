"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from table_importer.core.config import get_settings
from table_importer.services.executable_guard import ExecutableGuard
from table_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "game-table-importer"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def _check_database() -> dict[str, str]:
    from table_importer.db.session import engine

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy", "message": "Database connection successful"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}


def _check_redis(url: str) -> dict[str, str]:
    try:
        client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
        client.ping()
        client.close()
        return {"status": "healthy", "message": "Redis connection successful"}
    except RedisError as e:
        logger.warning(f"Redis health check failed: {e}")
        return {"status": "unhealthy", "message": f"Redis connection failed: {e}"}


def _check_converter(path: str) -> dict[str, str]:
    if ExecutableGuard(path).verify():
        return {"status": "healthy", "message": f"{path} is executable"}
    return {"status": "unhealthy", "message": f"{path} is missing or not executable"}


@router.get("/ready", summary="Readiness probe")
async def ready() -> dict[str, Any]:
    """Check the database, Redis and both converter executables.

    Redis only fails readiness when it backs the conversion lock; otherwise
    it merely carries progress snapshots. A held lock is reported, not failed:
    a long conversion is normal.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "database": _check_database(),
        "redis": _check_redis(settings.redis_url),
        "import_converter": _check_converter(settings.import_converter_path),
        "export_converter": _check_converter(settings.export_converter_path),
    }
    if settings.lock_backend == "file":
        checks["conversion_lock"] = {
            "status": "healthy",
            "held": settings.lock_file.exists(),
        }

    critical = ["database", "import_converter", "export_converter"]
    if settings.lock_backend == "redis":
        critical.append("redis")
    healthy = all(checks[name]["status"] == "healthy" for name in critical)

    body = {
        "status": "ok" if healthy else "unhealthy",
        "service": SERVICE_NAME,
        "checks": checks,
    }
    if not healthy:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=body)
    return body
