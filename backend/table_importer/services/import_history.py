"""Persist one ImportRun row per pipeline run."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from table_importer.db.models.import_run import ImportRun

logger = logging.getLogger(__name__)


class ImportHistory:
    """Activity log writer. Database trouble here never fails a run.

    A queued import that hit a busy lock is retried under the same job id,
    so ``start`` reopens an existing row instead of inserting a new one.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def start(self, job) -> None:
        session = self.session_factory()
        try:
            run = session.get(ImportRun, job.job_id)
            if run is None:
                run = ImportRun(id=job.job_id)
                session.add(run)
            else:
                logger.info(f"Reopening run {job.job_id} (previous status {run.status})")
            run.kind = job.kind
            run.mode = job.mode
            run.tenant_id = job.tenant_id or ""
            run.table_name = job.table_name or ""
            run.table_id = job.table_id
            run.status = "running"
            run.stage = job.stage.value
            run.rows_imported = 0
            run.error_message = None
            run.finished_at = None
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Failed to record start of run {job.job_id}: {e}")
        finally:
            session.close()

    def finish(self, job, status: str, error: str | None = None) -> None:
        session = self.session_factory()
        try:
            run = session.get(ImportRun, job.job_id)
            if run is None:
                logger.warning(f"No history row for run {job.job_id}")
                return
            run.status = status
            run.stage = job.stage.value
            run.table_id = job.table_id
            run.rows_imported = job.rows
            run.error_message = error
            run.meta = {"stages": [stage.value for stage in job.stages]}
            # A retrying run is not over yet
            if status != "retrying":
                run.finished_at = datetime.now(timezone.utc)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"Failed to record end of run {job.job_id}: {e}")
        finally:
            session.close()
