"""State tracking and failure handling shared by the import and export pipelines."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol

from table_importer.core.config import Settings
from table_importer.core.errors import (
    InputValidationError,
    InsertPhaseError,
    PipelineError,
    ResourceBusyError,
    TenantBusyError,
)
from table_importer.services.conversion_lock import ConversionLock

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def __call__(
        self,
        job_id: str,
        progress: float,
        message: str | None = None,
        *,
        status: str | None = None,
        stage: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> None: ...


class History(Protocol):
    def start(self, job: "PipelineJob") -> None: ...

    def finish(self, job: "PipelineJob", status: str, error: str | None = None) -> None: ...


@dataclass
class UploadedFile:
    filename: str
    content: bytes


@dataclass
class PipelineOptions:
    """Tunables for lock waits, output polling and the job deadline."""

    max_retries: int = 60
    retry_interval_ms: int = 1000
    request_timeout: float = 120.0
    output_wait: float = 5.0
    output_poll_interval: float = 0.1
    output_settle: float = 0.0
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineOptions":
        return cls(
            max_retries=settings.lock_max_retries,
            retry_interval_ms=settings.lock_retry_interval_ms,
            request_timeout=settings.request_timeout_seconds,
            output_wait=settings.output_wait_seconds,
            output_poll_interval=settings.output_poll_interval_seconds,
            output_settle=settings.output_settle_seconds,
        )


@dataclass
class PipelineJob:
    """One ephemeral run; nothing here outlives the request."""

    tenant_id: str
    table_name: str
    table_id: str | None = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    mode: str = "sync"
    kind: str = "import"
    stage: Enum | None = None
    stages: list[Enum] = field(default_factory=list)
    staging_dir: Path | None = None
    rows: int = 0
    failure: PipelineError | None = None
    # Set by the worker while it still has busy retries left
    retry_on_busy: bool = False


class PipelineBase:
    """Stage bookkeeping, tenant guard and the failure path."""

    stage_enum: type[Enum]
    failed_stage: Enum

    def __init__(
        self,
        *,
        tenant_locks: Callable[[str], ConversionLock] | None = None,
        history: History | None = None,
        progress: ProgressSink | None = None,
        options: PipelineOptions | None = None,
    ) -> None:
        self.tenant_locks = tenant_locks
        self.history = history
        self.progress = progress
        self.options = options or PipelineOptions()

    def _advance(self, job: PipelineJob, stage: Enum) -> None:
        job.stage = stage
        job.stages.append(stage)
        logger.info(f"[{job.kind} {job.job_id}] {job.tenant_id}/{job.table_name}: {stage.value}")
        if self.progress is not None:
            members = list(self.stage_enum)
            fraction = members.index(stage) / max(len(members) - 2, 1)
            self.progress(
                job.job_id,
                fraction,
                stage.value,
                status="completed" if fraction >= 1 else "running",
                stage=stage.value,
                meta={"tenant_id": job.tenant_id, "table_name": job.table_name},
            )

    def _require(self, **fields: Any) -> None:
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise InputValidationError(
                "Missing required fields",
                f"Missing required field(s): {', '.join(missing)}",
            )

    def _claim_tenant(self, job: PipelineJob) -> ConversionLock | None:
        if self.tenant_locks is None:
            return None
        lock = self.tenant_locks(job.tenant_id)
        if not lock.try_acquire():
            raise TenantBusyError(
                f"A job for tenant {job.tenant_id} is already running",
                "Wait for the running import or export to finish and retry.",
            )
        return lock

    def _start(self, job: PipelineJob) -> None:
        job.stage = list(self.stage_enum)[0]
        job.stages.append(job.stage)
        if self.history is not None:
            self.history.start(job)

    def _finish(self, job: PipelineJob) -> None:
        if self.history is not None:
            self.history.finish(job, "completed")

    def _fail(self, job: PipelineJob, exc: Exception) -> PipelineError:
        """Move ``job`` to the failed state and return the error to raise."""
        reached = job.stage.value if job.stage is not None else "Idle"
        if isinstance(exc, PipelineError):
            error = exc
        else:
            logger.error(
                f"[{job.kind} {job.job_id}] unexpected error after {reached}: {exc}",
                exc_info=True,
            )
            error = PipelineError(f"Unexpected error: {exc}")
        job.failure = error

        if isinstance(error, InsertPhaseError) and not error.rolled_back:
            logger.critical(
                f"[{job.kind} {job.job_id}] insert failed after delete: rows for "
                f"table_id={job.table_id} in {job.table_name} are now EMPTY. "
                f"Re-run the import. Cause: {error.details}"
            )
        elif error.status_code >= 500:
            logger.error(
                f"[{job.kind} {job.job_id}] failed after {reached}: {error.message} "
                f"({error.details})"
            )
        else:
            logger.warning(
                f"[{job.kind} {job.job_id}] rejected after {reached}: {error.message}"
            )

        status = "failed"
        if job.retry_on_busy and isinstance(error, (ResourceBusyError, TenantBusyError)):
            status = "retrying"

        # History keeps the last stage reached, not "Failed"
        if self.history is not None:
            self.history.finish(job, status, error.message)
        job.stage = self.failed_stage
        job.stages.append(self.failed_stage)
        if self.progress is not None:
            self.progress(
                job.job_id,
                0.0,
                error.public_message,
                status=status,
                stage=self.failed_stage.value if status == "failed" else reached,
                meta={"failed_after": reached, "error": error.message},
            )
        return error
