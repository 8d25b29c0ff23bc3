"""Endpoint converting a tenant's rows back into a downloadable RDF file."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from table_importer.api.dependencies.pipelines import get_export_coordinator
from table_importer.api.routers.imports import ERROR_RESPONSES
from table_importer.api.schemas.imports import ExportRequest, ExportResponse
from table_importer.services.export_pipeline import ExportCoordinator, ExportJob

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/",
    summary="Export a tenant's rows as RDF to object storage",
    response_model=ExportResponse,
    responses=ERROR_RESPONSES,
)
async def export_table(
    payload: ExportRequest,
    coordinator: ExportCoordinator = Depends(get_export_coordinator),
) -> ExportResponse:
    job = ExportJob(
        tenant_id=payload.tenant_id,
        table_name=payload.table_name,
        table_id=payload.table_id or None,
    )
    result = await run_in_threadpool(coordinator.run, job)
    logger.info(f"Export {result.job_id} wrote {result.rows} row(s) to {result.file_path}")
    return ExportResponse(file_path=result.file_path, download_url=result.download_url)
