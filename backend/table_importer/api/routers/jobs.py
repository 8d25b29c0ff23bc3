"""Import/export run tracking: the activity log and per-job status."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from table_importer.api.dependencies.db import get_session
from table_importer.api.routers.job_helpers import serialize_run
from table_importer.api.schemas.job import JobStatus
from table_importer.db.models.import_run import ImportRun
from table_importer.services.progress_tracker import fetch_progress

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/",
    summary="List recent import and export runs",
    response_model=list[JobStatus],
)
async def list_jobs(
    tenant_id: str | None = Query(None, alias="tenantId", description="Filter by tenant"),
    status_filter: str | None = Query(
        None,
        alias="status",
        description="Filter by status (running, retrying, completed, failed)",
    ),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of runs to return"),
    db: Session = Depends(get_session),
) -> list[JobStatus]:
    """Newest first. Progress snapshots are only merged for runs still in flight."""
    try:
        query = select(ImportRun)
        if tenant_id:
            query = query.where(ImportRun.tenant_id == tenant_id)
        if status_filter:
            query = query.where(ImportRun.status == status_filter)
        query = query.order_by(ImportRun.created_at.desc()).limit(limit)
        runs = db.execute(query).scalars().all()
    except SQLAlchemyError as exc:
        logger.error(f"Database error listing runs: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list runs",
        ) from exc

    in_flight = ("running", "retrying")
    return [
        serialize_run(run, fetch_progress(run.id) if run.status in in_flight else None)
        for run in runs
    ]


@router.get(
    "/{job_id}",
    summary="Check import progress",
    response_model=JobStatus,
)
async def get_job(
    job_id: str,
    db: Session = Depends(get_session),
) -> JobStatus:
    try:
        run = db.get(ImportRun, job_id)
    except SQLAlchemyError as exc:
        logger.error(f"Database error fetching run {job_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve job status",
        ) from exc

    progress_payload = fetch_progress(job_id)
    if run is None and not progress_payload:
        raise HTTPException(status_code=404, detail="Job not found")
    return serialize_run(run, progress_payload)
