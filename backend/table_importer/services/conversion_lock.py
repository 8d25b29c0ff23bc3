"""Advisory locks serializing access to the non-reentrant converters.

A single global lock guards "run converter -> read its output"; the same
interface is reused for the per-tenant guard that rejects overlapping jobs
for one tenant.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Protocol

from redis import Redis
from redis.exceptions import LockError, RedisError

from table_importer.core.errors import ResourceBusyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 60
DEFAULT_RETRY_INTERVAL_MS = 1000


class ConversionLock(Protocol):
    """Named mutual-exclusion resource."""

    name: str

    def try_acquire(self) -> bool:
        """Take the lock without waiting; False when someone else holds it."""
        ...

    def release(self) -> None:
        """Give the lock back. Idempotent and never raises."""
        ...


class FileConversionLock:
    """Sentinel-file lock: ownership is the exclusive creation of ``path``."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.name = str(self.path)

    def try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        # Any other OSError is fatal and propagates to the caller
        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        return True

    def release(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Error releasing lock {self.path}: {e}")

    def is_held(self) -> bool:
        return self.path.exists()


class RedisConversionLock:
    """Lock shared by several service instances through Redis.

    The TTL bounds how long a crashed holder can block everyone else.
    """

    def __init__(self, client: Redis, name: str, ttl_seconds: int = 600) -> None:
        self.name = name
        self._lock = client.lock(name, timeout=ttl_seconds, blocking=False)

    def try_acquire(self) -> bool:
        return bool(self._lock.acquire(blocking=False))

    def release(self) -> None:
        try:
            self._lock.release()
        except LockError:
            # Not owned (already released or expired)
            pass
        except RedisError as e:
            logger.error(f"Error releasing redis lock {self.name}: {e}")


class InMemoryConversionLock:
    """Process-local lock for tests and single-process deployments."""

    def __init__(self, name: str = "conversion") -> None:
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        try:
            self._lock.release()
        except RuntimeError:
            pass

    def is_held(self) -> bool:
        return self._lock.locked()


def acquire(
    lock: ConversionLock,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS,
    *,
    deadline: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Poll ``lock`` until acquired.

    Raises ``ResourceBusyError`` once ``max_retries`` attempts failed or the
    monotonic ``deadline`` has passed. Errors other than contention propagate
    unchanged.
    """
    interval = retry_interval_ms / 1000
    for attempt in range(1, max_retries + 1):
        if deadline is not None and clock() >= deadline:
            break
        if lock.try_acquire():
            if attempt > 1:
                logger.info(f"Acquired lock {lock.name} after {attempt} attempts")
            return
        if attempt < max_retries:
            sleep(interval)
    logger.warning(f"Gave up waiting for lock {lock.name}")
    raise ResourceBusyError(
        "Could not acquire lock for conversion process",
        "Could not acquire lock for conversion process. Please try again later.",
    )


@contextmanager
def held(
    lock: ConversionLock,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_interval_ms: int = DEFAULT_RETRY_INTERVAL_MS,
    *,
    deadline: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[ConversionLock]:
    """Scoped acquisition: the lock is released on every exit path."""
    acquire(lock, max_retries, retry_interval_ms, deadline=deadline, sleep=sleep)
    try:
        yield lock
    finally:
        lock.release()
