"""Shared helpers for shaping run responses."""
from __future__ import annotations

from table_importer.api.schemas.job import JobStatus
from table_importer.db.models.import_run import ImportRun


def serialize_run(run: ImportRun | None, progress_payload: dict | None) -> JobStatus:
    """Combine the history row (if any) with the cached progress snapshot.

    Queued jobs have no history row until a worker picks them up, so the
    Redis snapshot alone must be enough to answer.
    """
    progress_payload = progress_payload or {}
    meta = progress_payload.get("meta") or {}

    if run is None:
        return JobStatus(
            id=progress_payload["job_id"],
            type="import",
            mode="async",
            status=progress_payload.get("status") or "pending",
            stage=progress_payload.get("stage"),
            progress=progress_payload.get("progress"),
            message=progress_payload.get("message"),
            tenant_id=meta.get("tenant_id"),
            table_name=meta.get("table_name"),
        )

    # Finished runs are authoritative; Redis may lag behind the database
    if run.status in ("completed", "failed"):
        progress = 1.0 if run.status == "completed" else progress_payload.get("progress")
        status_value = run.status
    else:
        progress = progress_payload.get("progress")
        status_value = progress_payload.get("status") or run.status

    return JobStatus(
        id=run.id,
        type=run.kind,
        mode=run.mode,
        status=status_value,
        stage=run.stage if run.status != "running" else progress_payload.get("stage", run.stage),
        progress=progress,
        message=progress_payload.get("message"),
        tenant_id=run.tenant_id,
        table_name=run.table_name,
        stages=(run.meta or {}).get("stages"),
        rows_imported=run.rows_imported,
        error_message=run.error_message,
        started_at=run.created_at,
        finished_at=run.finished_at,
    )
