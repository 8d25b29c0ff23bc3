"""Endpoints for RDF table imports."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from starlette.concurrency import run_in_threadpool

from table_importer.api.dependencies.pipelines import get_import_coordinator
from table_importer.api.schemas.imports import (
    ErrorResponse,
    ImportAccepted,
    ImportResponse,
)
from table_importer.core.errors import InputValidationError, PipelineError
from table_importer.services.import_pipeline import ImportCoordinator, ImportJob
from table_importer.services.pipeline import UploadedFile
from table_importer.services.progress_tracker import publish_progress
from table_importer.services.table_store import validate_table_name
from table_importer.storage.file_storage import discard_upload, store_upload
from table_importer.storage.staging import validate_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid fields"},
    409: {"model": ErrorResponse, "description": "Tenant already importing"},
    500: {"model": ErrorResponse, "description": "Configuration or conversion failure"},
    503: {"model": ErrorResponse, "description": "Converter busy, retry later"},
}


async def _read_upload(file: UploadFile | None) -> UploadedFile | None:
    if file is None:
        return None
    await file.seek(0)
    content = await file.read()
    return UploadedFile(filename=file.filename or "upload.rdf", content=content)


@router.post(
    "/",
    summary="Replace a tenant's rows with the contents of an RDF file",
    response_model=ImportResponse,
    responses=ERROR_RESPONSES,
)
async def import_table(
    file: UploadFile | None = File(None),
    tenant_id: str | None = Form(None, alias="tenantId"),
    table_name: str | None = Form(None, alias="tableName"),
    table_id: str | None = Form(None, alias="tableId"),
    coordinator: ImportCoordinator = Depends(get_import_coordinator),
) -> ImportResponse:
    """Run the import on a worker thread and acknowledge once rows are replaced.

    Callers re-fetch the table afterwards; no rows are returned inline.
    """
    job = ImportJob(
        tenant_id=tenant_id or "",
        table_name=table_name or "",
        table_id=table_id or None,
        upload=await _read_upload(file),
    )
    # Lock waits and the converter block; keep them off the event loop
    result = await run_in_threadpool(coordinator.run, job)
    logger.info(
        f"Import {result.job_id} replaced {result.rows} row(s) in {job.table_name} "
        f"for {job.table_id}"
    )
    return ImportResponse(success=True)


@router.post(
    "/async",
    summary="Queue an import on the worker",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportAccepted,
    responses=ERROR_RESPONSES,
)
async def enqueue_import(
    file: UploadFile | None = File(None),
    tenant_id: str | None = Form(None, alias="tenantId"),
    table_name: str | None = Form(None, alias="tableName"),
    table_id: str | None = Form(None, alias="tableId"),
) -> ImportAccepted:
    """Stage the upload for a worker and return a job id to poll."""
    from table_importer.workers.tasks.run_import import run_import_task

    upload = await _read_upload(file)
    missing = [
        name
        for name, value in (("file", upload), ("tenantId", tenant_id), ("tableName", table_name))
        if not value
    ]
    if missing:
        raise InputValidationError(
            "Missing required fields", f"Missing required field(s): {', '.join(missing)}"
        )
    if not upload.content:
        raise InputValidationError("Uploaded file is empty")
    validate_tenant_id(tenant_id)
    validate_table_name(table_name)

    job_id = str(uuid.uuid4())
    try:
        location = await run_in_threadpool(store_upload, job_id, upload.content)
    except OSError as exc:
        logger.error(f"Failed to stage upload for job {job_id}: {exc}", exc_info=True)
        raise PipelineError("Failed to save uploaded file", str(exc)) from exc

    publish_progress(job_id, 0.0, "Queued", status="pending", stage="Idle")
    try:
        run_import_task.apply_async(
            args=(job_id, tenant_id, table_name, table_id or None, upload.filename, location),
            queue="imports",
        )
    except Exception as exc:
        logger.error(f"Error enqueueing import task: {exc}", exc_info=True)
        discard_upload(location)
        publish_progress(job_id, 0.0, "Failed to queue", status="failed", stage="Failed")
        raise PipelineError("Failed to start import process", str(exc)) from exc

    logger.info(f"Queued import {job_id} of {upload.filename} into {table_name}")
    return ImportAccepted(job_id=job_id, status_url=f"/api/jobs/{job_id}")
