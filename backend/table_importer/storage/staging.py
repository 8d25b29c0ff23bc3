"""Per-tenant scratch directories shared with the converters."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from table_importer.core.errors import InputValidationError, StagingError
from table_importer.storage.s3_client import ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)

TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_tenant_id(tenant_id: str) -> str:
    if not tenant_id or not TENANT_ID_PATTERN.match(tenant_id):
        raise InputValidationError(f"Invalid tenant id: {tenant_id!r}")
    return tenant_id


class StagingArea:
    """Owns ``<root>/<tenant_id>`` locally and ``<tenant_id>/`` remotely.

    Converter output names derive from the table name only, so stale files
    from a previous job must be gone before a new job stages anything.
    Cleanup failures are logged, never escalated.
    """

    def __init__(self, root: str | Path, object_store: ObjectStore | None = None) -> None:
        self.root = Path(root)
        self.object_store = object_store

    def path_for(self, tenant_id: str) -> Path:
        return self.root / validate_tenant_id(tenant_id)

    def prepare(self, tenant_id: str) -> Path:
        """Clean previous leftovers and create a fresh staging directory."""
        self.cleanup(tenant_id)
        staging_dir = self.path_for(tenant_id)
        try:
            staging_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create staging dir {staging_dir}: {e}", exc_info=True)
            raise StagingError(f"Failed to create staging directory: {e}") from e
        return staging_dir

    def cleanup(self, tenant_id: str) -> None:
        self._remove_local(tenant_id)
        if self.object_store is None:
            return
        prefix = f"{tenant_id}/"
        try:
            keys = self.object_store.list(prefix)
        except ObjectStoreError as e:
            logger.warning(f"Error listing storage files for {tenant_id}: {e}")
            return
        if not keys:
            return
        try:
            self.object_store.remove(keys)
            logger.info(f"Removed {len(keys)} stale object(s) under {prefix}")
        except ObjectStoreError as e:
            logger.warning(f"Error deleting storage files for {tenant_id}: {e}")

    def teardown(self, tenant_id: str) -> None:
        self._remove_local(tenant_id)

    def _remove_local(self, tenant_id: str) -> None:
        staging_dir = self.path_for(tenant_id)
        if not staging_dir.exists():
            return
        try:
            shutil.rmtree(staging_dir)
        except OSError as e:
            logger.warning(f"Failed to remove staging dir {staging_dir}: {e}")
