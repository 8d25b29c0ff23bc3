"""Export coordinator: tenant rows -> CSV -> converter -> RDF in object storage."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from table_importer.core.errors import (
    ConfigurationError,
    StagingError,
    StorageUploadError,
)
from table_importer.services import conversion_lock
from table_importer.services.conversion_lock import ConversionLock
from table_importer.services.converter import Converter, wait_for_output
from table_importer.services.csv_ingest import write_csv
from table_importer.services.executable_guard import ExecutableGuard
from table_importer.services.pipeline import PipelineBase, PipelineJob
from table_importer.services.table_store import INTERNAL_COLUMNS, TableStore
from table_importer.storage.s3_client import ObjectStore, ObjectStoreError
from table_importer.storage.staging import StagingArea, validate_tenant_id

logger = logging.getLogger(__name__)

# Column order the export converter expects, per table. Tables not listed
# export every non-internal column in table order.
EXPORT_COLUMNS: dict[str, list[str]] = {
    "exp_table": [
        "tblidx",
        "dwexp",
        "dwneed_exp",
        "wstagewinsolo",
        "wstagedrawsolo",
        "wstagelosesolo",
        "wwinsolo",
        "wperfectwinsolo",
        "wstagewinteam",
        "wstagedrawteam",
        "wstageloseteam",
        "wwinteam",
        "wperfectwinteam",
        "wnormal_race",
        "wsuperrace",
        "dwmobexp",
        "dwphydefenceref",
        "dwengdefenceref",
        "dwmobzenny",
    ],
    "merchant_table": ["tblidx", "name", "price"],
    "item_table": ["tblidx", "name", "description"],
}


class ExportStage(str, Enum):
    IDLE = "Idle"
    GUARD_CHECKED = "GuardChecked"
    ROWS_FETCHED = "RowsFetched"
    INPUT_WRITTEN = "InputWritten"
    LOCKED = "Locked"
    CONVERTED = "Converted"
    OUTPUT_VERIFIED = "OutputVerified"
    UNLOCKED = "Unlocked"
    UPLOADED = "Uploaded"
    CLEANED = "Cleaned"
    DONE = "Done"
    FAILED = "Failed"


@dataclass
class ExportJob(PipelineJob):
    kind: str = "export"
    csv_path: Path | None = None
    rdf_path: Path | None = None


@dataclass
class ExportResult:
    job_id: str
    file_path: str
    download_url: str
    rows: int
    success: bool = True


def export_columns(table_name: str, available: list[str]) -> list[str]:
    configured = EXPORT_COLUMNS.get(table_name)
    if configured:
        return configured
    return [c for c in available if c not in INTERNAL_COLUMNS]


class ExportCoordinator(PipelineBase):
    """Runs one export; shares the global conversion lock with imports."""

    stage_enum = ExportStage
    failed_stage = ExportStage.FAILED

    def __init__(
        self,
        *,
        guard: ExecutableGuard,
        lock: ConversionLock,
        staging: StagingArea,
        converter: Converter,
        table_store: TableStore,
        object_store: ObjectStore | None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.guard = guard
        self.lock = lock
        self.staging = staging
        self.converter = converter
        self.table_store = table_store
        self.object_store = object_store

    def run(self, job: ExportJob) -> ExportResult:
        deadline = time.monotonic() + self.options.request_timeout
        tenant_lock: ConversionLock | None = None
        staged = False
        self._start(job)
        try:
            if not self.guard.verify():
                raise ConfigurationError(
                    "Converter unavailable",
                    "Export utility is not properly configured",
                )
            if self.object_store is None:
                raise ConfigurationError(
                    "Object storage unavailable", "S3_BUCKET is not configured"
                )
            self._advance(job, ExportStage.GUARD_CHECKED)

            self._require(tenantId=job.tenant_id, tableName=job.table_name)
            validate_tenant_id(job.tenant_id)
            job.table_id = job.table_id or job.tenant_id
            columns = export_columns(
                job.table_name, self.table_store.describe(job.table_name)
            )
            tenant_lock = self._claim_tenant(job)

            job.staging_dir = self.staging.prepare(job.tenant_id)
            staged = True
            rows = self.table_store.fetch_rows(job.table_name, job.table_id, columns)
            self._advance(job, ExportStage.ROWS_FETCHED)

            job.csv_path = job.staging_dir / f"{job.table_name}.csv"
            job.rdf_path = job.staging_dir / f"{job.table_name}.rdf"
            try:
                job.rows = write_csv(job.csv_path, columns, rows)
            except OSError as e:
                raise StagingError(f"Failed to write export CSV: {e}") from e
            self._advance(job, ExportStage.INPUT_WRITTEN)

            with conversion_lock.held(
                self.lock,
                self.options.max_retries,
                self.options.retry_interval_ms,
                deadline=deadline,
                sleep=self.options.sleep,
            ):
                self._advance(job, ExportStage.LOCKED)
                self.converter.convert(
                    [job.table_name, job.tenant_id],
                    input_path=job.csv_path,
                    output_dir=job.staging_dir,
                )
                self._advance(job, ExportStage.CONVERTED)
                wait_for_output(
                    job.rdf_path,
                    self.options.output_wait,
                    self.options.output_poll_interval,
                    settle=self.options.output_settle,
                    sleep=self.options.sleep,
                )
                self._advance(job, ExportStage.OUTPUT_VERIFIED)
            self._advance(job, ExportStage.UNLOCKED)

            storage_path = f"{job.tenant_id}/{job.table_name}.rdf"
            try:
                self.object_store.upload(storage_path, job.rdf_path.read_bytes())
                download_url = self.object_store.public_url(storage_path)
            except ObjectStoreError as e:
                raise StorageUploadError(str(e)) from e
            self._advance(job, ExportStage.UPLOADED)

            self.staging.teardown(job.tenant_id)
            staged = False
            self._advance(job, ExportStage.CLEANED)
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

        self._advance(job, ExportStage.DONE)
        self._finish(job)
        return ExportResult(
            job_id=job.job_id,
            file_path=storage_path,
            download_url=download_url,
            rows=job.rows,
        )
