"""Import coordinator: RDF upload -> converter -> CSV -> tenant rows replaced."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from table_importer.core.errors import (
    ConfigurationError,
    InputValidationError,
    StagingError,
)
from table_importer.services import conversion_lock
from table_importer.services.conversion_lock import ConversionLock
from table_importer.services.converter import Converter, wait_for_output
from table_importer.services.csv_ingest import normalize_records, parse_csv
from table_importer.services.executable_guard import ExecutableGuard
from table_importer.services.pipeline import (
    PipelineBase,
    PipelineJob,
    UploadedFile,
)
from table_importer.services.table_store import TableStore
from table_importer.storage.staging import StagingArea, validate_tenant_id

logger = logging.getLogger(__name__)

INPUT_EXTENSION = "rdf"
OUTPUT_FORMAT = "csv"


class ImportStage(str, Enum):
    IDLE = "Idle"
    GUARD_CHECKED = "GuardChecked"
    INPUT_WRITTEN = "InputWritten"
    INPUT_VERIFIED = "InputVerified"
    LOCKED = "Locked"
    CONVERTED = "Converted"
    OUTPUT_VERIFIED = "OutputVerified"
    PARSED = "Parsed"
    UNLOCKED = "Unlocked"
    OLD_ROWS_DELETED = "OldRowsDeleted"
    NEW_ROWS_INSERTED = "NewRowsInserted"
    CLEANED = "Cleaned"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class ImportJob(PipelineJob):
    upload: UploadedFile | None = None
    input_path: Path | None = None
    output_path: Path | None = None


@dataclass
class ImportResult:
    job_id: str
    rows: int
    success: bool = True


class ImportCoordinator(PipelineBase):
    """Runs one import end to end.

    The global conversion lock is held only from converter start until its
    CSV output is parsed; the database phase runs unlocked. Every failure
    releases held locks and removes the tenant's staging directory before
    the error reaches the caller.
    """

    stage_enum = ImportStage
    failed_stage = ImportStage.FAILED

    def __init__(
        self,
        *,
        guard: ExecutableGuard,
        lock: ConversionLock,
        staging: StagingArea,
        converter: Converter,
        table_store: TableStore,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.guard = guard
        self.lock = lock
        self.staging = staging
        self.converter = converter
        self.table_store = table_store

    def run(self, job: ImportJob) -> ImportResult:
        deadline = time.monotonic() + self.options.request_timeout
        tenant_lock: ConversionLock | None = None
        staged = False
        self._start(job)
        try:
            if not self.guard.verify():
                raise ConfigurationError(
                    "Converter unavailable",
                    "Conversion utility is not properly configured",
                )
            self._advance(job, ImportStage.GUARD_CHECKED)

            self._validate(job)
            tenant_lock = self._claim_tenant(job)

            job.staging_dir = self.staging.prepare(job.tenant_id)
            staged = True
            self._write_input(job)

            records = self._convert_and_parse(job, deadline)

            rows = normalize_records(records, job.table_id)
            job.rows = self.table_store.replace_rows(
                job.table_name,
                job.table_id,
                rows,
                on_deleted=lambda: self._advance(job, ImportStage.OLD_ROWS_DELETED),
            )
            self._advance(job, ImportStage.NEW_ROWS_INSERTED)

            self.staging.teardown(job.tenant_id)
            staged = False
            self._advance(job, ImportStage.CLEANED)
        except Exception as exc:
            error = self._fail(job, exc)
            if error is exc:
                raise
            raise error from exc
        finally:
            if staged:
                self.staging.teardown(job.tenant_id)
            if tenant_lock is not None:
                tenant_lock.release()

        self._advance(job, ImportStage.DONE)
        self._finish(job)
        return ImportResult(job_id=job.job_id, rows=job.rows)

    def _validate(self, job: ImportJob) -> None:
        self._require(
            file=job.upload, tenantId=job.tenant_id, tableName=job.table_name
        )
        if not job.upload.content:
            raise InputValidationError("Uploaded file is empty")
        validate_tenant_id(job.tenant_id)
        job.table_id = job.table_id or job.tenant_id
        # Rejects unknown tables before anything is written
        self.table_store.describe(job.table_name)

    def _write_input(self, job: ImportJob) -> None:
        job.input_path = job.staging_dir / f"{job.table_name}.{INPUT_EXTENSION}"
        job.output_path = job.staging_dir / f"{job.table_name}.{OUTPUT_FORMAT}"
        try:
            job.input_path.write_bytes(job.upload.content)
        except OSError as e:
            raise StagingError(f"Failed to write uploaded file: {e}") from e
        self._advance(job, ImportStage.INPUT_WRITTEN)

        if not job.input_path.is_file():
            raise StagingError(
                "Uploaded file was not written", f"Missing {job.input_path}"
            )
        size = job.input_path.stat().st_size
        logger.info(
            f"Staged {job.upload.filename!r} as {job.input_path} ({size} bytes)"
        )
        self._advance(job, ImportStage.INPUT_VERIFIED)

    def _convert_and_parse(self, job: ImportJob, deadline: float) -> list[dict]:
        with conversion_lock.held(
            self.lock,
            self.options.max_retries,
            self.options.retry_interval_ms,
            deadline=deadline,
            sleep=self.options.sleep,
        ):
            self._advance(job, ImportStage.LOCKED)
            self.converter.convert(
                [job.table_name, job.tenant_id, OUTPUT_FORMAT],
                input_path=job.input_path,
                output_dir=job.staging_dir,
            )
            self._advance(job, ImportStage.CONVERTED)

            wait_for_output(
                job.output_path,
                self.options.output_wait,
                self.options.output_poll_interval,
                settle=self.options.output_settle,
                sleep=self.options.sleep,
            )
            self._advance(job, ImportStage.OUTPUT_VERIFIED)

            parsed = parse_csv(job.output_path)
            self._advance(job, ImportStage.PARSED)
        self._advance(job, ImportStage.UNLOCKED)
        return parsed.records
