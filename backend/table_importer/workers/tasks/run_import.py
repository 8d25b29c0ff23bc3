"""Celery task running a queued import through the same coordinator as the API."""

from __future__ import annotations

import logging

from table_importer.core.errors import (
    InputValidationError,
    PipelineError,
    ResourceBusyError,
    TenantBusyError,
)
from table_importer.services.import_pipeline import ImportJob
from table_importer.services.pipeline import UploadedFile
from table_importer.services.progress_tracker import publish_progress
from table_importer.services.wiring import build_import_coordinator
from table_importer.storage.file_storage import discard_upload, load_upload
from table_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

BUSY_RETRY_COUNTDOWN = 30
BUSY_MAX_RETRIES = 5


@celery_app.task(bind=True, name="table_importer.workers.tasks.run_import")
def run_import_task(
    self,
    job_id: str,
    tenant_id: str,
    table_name: str,
    table_id: str | None,
    filename: str,
    location: str,
) -> dict:
    """Load the staged upload, run the import, and drop the upload afterwards.

    Busy conditions (global lock or a running job for the same tenant) are
    retried a few times; every other failure is final.
    """
    content = load_upload(location)
    if content is None:
        publish_progress(
            job_id, 0.0, "Uploaded file expired", status="failed", stage="Failed"
        )
        raise InputValidationError(
            "Uploaded file not found",
            f"Upload for job {job_id} expired or was never stored",
        )

    job = ImportJob(
        tenant_id=tenant_id,
        table_name=table_name,
        table_id=table_id,
        job_id=job_id,
        mode="async",
        upload=UploadedFile(filename=filename, content=content),
        retry_on_busy=self.request.retries < BUSY_MAX_RETRIES,
    )
    coordinator = build_import_coordinator()
    try:
        result = coordinator.run(job)
    except (ResourceBusyError, TenantBusyError) as exc:
        if job.retry_on_busy:
            logger.info(f"Import {job_id} busy, retrying in {BUSY_RETRY_COUNTDOWN}s")
            raise self.retry(exc=exc, countdown=BUSY_RETRY_COUNTDOWN)
        discard_upload(location)
        raise
    except PipelineError:
        discard_upload(location)
        raise
    discard_upload(location)
    logger.info(f"Import {job_id} finished with {result.rows} row(s)")
    return {"success": True, "job_id": job_id, "rows": result.rows}
