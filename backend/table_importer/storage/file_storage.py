"""Hand uploaded files from the API to Celery workers on other instances.

Uploads go to Redis under ``files:upload:<job_id>``; when Redis is down or
the file is too large they fall back to ``<work_dir>/.uploads`` which only
works when API and worker share a filesystem.
"""

from __future__ import annotations

import logging
from pathlib import Path

from redis.exceptions import RedisError

from table_importer.core.config import get_settings
from table_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)

# Redis key prefix for file storage
FILE_STORAGE_PREFIX = "files:upload:"
# TTL for files in Redis (24 hours)
FILE_STORAGE_TTL = 86400
MAX_REDIS_FILE_SIZE = 100 * 1024 * 1024


def _key(job_id: str) -> str:
    return f"{FILE_STORAGE_PREFIX}{job_id}"


def _fallback_path(job_id: str) -> Path:
    return Path(get_settings().work_dir) / ".uploads" / job_id


def store_upload(job_id: str, content: bytes) -> str:
    """Stage ``content`` for a worker; returns ``redis:<job_id>`` or a local path."""
    if len(content) <= MAX_REDIS_FILE_SIZE:
        try:
            client = create_redis_client(get_settings().redis_url, decode_responses=False)
            client.set(_key(job_id), content, ex=FILE_STORAGE_TTL)
            client.close()
            logger.info(f"Stored upload in Redis for job {job_id} ({len(content)} bytes)")
            return f"redis:{job_id}"
        except RedisError as e:
            logger.warning(f"Failed to store upload in Redis: {e}, using local filesystem")
    else:
        logger.warning(
            f"Upload too large for Redis storage ({len(content)} bytes), "
            f"using local filesystem"
        )

    path = _fallback_path(job_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return str(path)


def load_upload(location: str) -> bytes | None:
    """Return the staged bytes, or None when they expired or never arrived."""
    if location.startswith("redis:"):
        job_id = location.split(":", 1)[1]
        try:
            client = create_redis_client(get_settings().redis_url, decode_responses=False)
            content = client.get(_key(job_id))
            client.close()
        except RedisError as e:
            logger.warning(f"Failed to retrieve upload from Redis: {e}")
            return None
        return content
    path = Path(location)
    if not path.is_file():
        return None
    return path.read_bytes()


def discard_upload(location: str) -> None:
    """Best-effort removal once the worker is done with the upload."""
    try:
        if location.startswith("redis:"):
            job_id = location.split(":", 1)[1]
            client = create_redis_client(get_settings().redis_url, decode_responses=False)
            client.delete(_key(job_id))
            client.close()
        else:
            Path(location).unlink(missing_ok=True)
    except (RedisError, OSError) as e:
        logger.warning(f"Failed to discard staged upload {location}: {e}")
