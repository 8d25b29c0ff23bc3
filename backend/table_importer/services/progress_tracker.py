"""Shared helpers for publishing pipeline stage progress to Redis."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from functools import lru_cache
from typing import Any

from redis import Redis
from redis.exceptions import RedisError

from table_importer.core.config import get_settings
from table_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

PROGRESS_PREFIX = "jobs:progress:"
PROGRESS_TTL = timedelta(hours=24)


@lru_cache
def get_redis() -> Redis:
    return create_redis_client(get_settings().redis_url, decode_responses=True)


def _key(job_id: str) -> str:
    return f"{PROGRESS_PREFIX}{job_id}"


def publish_progress(
    job_id: str,
    progress: float,
    message: str | None = None,
    *,
    status: str | None = None,
    stage: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Persist the latest stage snapshot so the dashboard can poll it."""
    payload = {
        "job_id": job_id,
        "progress": max(0.0, min(progress, 1.0)),
        "message": message,
        "status": status,
        "stage": stage,
        "meta": meta or {},
    }
    try:
        get_redis().set(
            _key(job_id),
            json.dumps(payload),
            ex=int(PROGRESS_TTL.total_seconds()),
        )
    except RedisError as e:
        # Redis availability should not break an import.
        logger.debug(f"Could not publish progress for {job_id}: {e}")


def fetch_progress(job_id: str) -> dict[str, Any]:
    """Return the latest snapshot used by the jobs endpoint."""
    try:
        raw = get_redis().get(_key(job_id))
    except RedisError:
        return {}
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {}
