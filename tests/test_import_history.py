from __future__ import annotations

import logging

import pytest

from table_importer.core.errors import ResourceBusyError, TenantBusyError
from table_importer.db.models import ImportRun
from table_importer.services.conversion_lock import FileConversionLock
from table_importer.services.import_history import ImportHistory

from conftest import widget_job


def load_runs(sessions):
    with sessions() as session:
        return session.query(ImportRun).all()


def test_busy_worker_attempt_is_retrying_then_completes_on_the_same_row(
    make_importer, history_sessions, lock, caplog
):
    history = ImportHistory(history_sessions)
    assert lock.try_acquire()
    first = widget_job(job_id="job-1", mode="async", retry_on_busy=True)

    with pytest.raises(ResourceBusyError):
        make_importer(history=history).run(first)

    (run,) = load_runs(history_sessions)
    assert run.status == "retrying"
    assert run.stage == "InputVerified"
    assert run.finished_at is None

    lock.release()
    caplog.set_level(logging.INFO)
    retry = widget_job(job_id="job-1", mode="async")
    make_importer(history=history).run(retry)

    (run,) = load_runs(history_sessions)
    assert run.status == "completed"
    assert run.error_message is None
    assert run.rows_imported == 2
    assert run.finished_at is not None
    assert "Failed to record start" not in caplog.text


def test_busy_failure_is_final_without_retries_left(make_importer, history_sessions, work_dir):
    history = ImportHistory(history_sessions)
    assert FileConversionLock(work_dir / ".locks" / "T1.lock").try_acquire()

    with pytest.raises(TenantBusyError):
        make_importer(history=history).run(widget_job(mode="async"))

    (run,) = load_runs(history_sessions)
    assert run.status == "failed"
    assert run.finished_at is not None


def test_finished_run_records_its_stages(make_importer, history_sessions):
    job = widget_job()
    make_importer(history=ImportHistory(history_sessions)).run(job)

    (run,) = load_runs(history_sessions)
    assert run.meta["stages"] == [stage.value for stage in job.stages]
    assert run.meta["stages"][-1] == "Done"
