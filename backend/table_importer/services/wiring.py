"""Builds the pipeline coordinators from settings for the API and the worker."""

from __future__ import annotations

from functools import lru_cache
from typing import Callable

from table_importer.core.config import Settings, get_settings
from table_importer.services.conversion_lock import (
    ConversionLock,
    FileConversionLock,
    RedisConversionLock,
)
from table_importer.services.converter import ExternalConverter
from table_importer.services.executable_guard import ExecutableGuard
from table_importer.services.export_pipeline import ExportCoordinator
from table_importer.services.import_history import ImportHistory
from table_importer.services.import_pipeline import ImportCoordinator
from table_importer.services.pipeline import PipelineOptions
from table_importer.services.progress_tracker import publish_progress
from table_importer.services.table_store import SqlAlchemyTableStore
from table_importer.storage.s3_client import build_object_store
from table_importer.storage.staging import StagingArea
from table_importer.utils.redis_client import create_redis_client

GLOBAL_LOCK_KEY = "locks:conversion"
TENANT_LOCK_PREFIX = "locks:tenant:"


def build_conversion_lock(settings: Settings) -> ConversionLock:
    if settings.lock_backend == "redis":
        client = create_redis_client(settings.redis_url)
        return RedisConversionLock(client, GLOBAL_LOCK_KEY, settings.lock_ttl_seconds)
    return FileConversionLock(settings.lock_file)


def build_tenant_locks(settings: Settings) -> Callable[[str], ConversionLock]:
    if settings.lock_backend == "redis":
        client = create_redis_client(settings.redis_url)
        return lambda tenant_id: RedisConversionLock(
            client, f"{TENANT_LOCK_PREFIX}{tenant_id}", settings.lock_ttl_seconds
        )
    return lambda tenant_id: FileConversionLock(
        settings.tenant_lock_dir / f"{tenant_id}.lock"
    )


@lru_cache
def _shared() -> dict:
    settings = get_settings()
    # Imported here so building settings-only helpers never opens the DB
    from table_importer.db.session import engine, get_fresh_session

    object_store = build_object_store(settings)
    return {
        "lock": build_conversion_lock(settings),
        "tenant_locks": build_tenant_locks(settings),
        "staging": StagingArea(settings.work_dir, object_store),
        "object_store": object_store,
        "table_store": SqlAlchemyTableStore(engine, atomic=settings.atomic_replace),
        "history": ImportHistory(get_fresh_session),
        "options": PipelineOptions.from_settings(settings),
    }


def build_import_coordinator() -> ImportCoordinator:
    settings = get_settings()
    shared = _shared()
    return ImportCoordinator(
        guard=ExecutableGuard(settings.import_converter_path),
        lock=shared["lock"],
        staging=shared["staging"],
        converter=ExternalConverter(
            settings.import_converter_path, timeout=settings.converter_timeout_seconds
        ),
        table_store=shared["table_store"],
        tenant_locks=shared["tenant_locks"],
        history=shared["history"],
        progress=publish_progress,
        options=shared["options"],
    )


def build_export_coordinator() -> ExportCoordinator:
    settings = get_settings()
    shared = _shared()
    return ExportCoordinator(
        guard=ExecutableGuard(settings.export_converter_path),
        lock=shared["lock"],
        staging=shared["staging"],
        converter=ExternalConverter(
            settings.export_converter_path, timeout=settings.converter_timeout_seconds
        ),
        table_store=shared["table_store"],
        object_store=shared["object_store"],
        tenant_locks=shared["tenant_locks"],
        history=shared["history"],
        progress=publish_progress,
        options=shared["options"],
    )
