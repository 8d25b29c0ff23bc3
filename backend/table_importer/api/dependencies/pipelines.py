"""Coordinator dependencies; tests override these with in-memory collaborators."""

from table_importer.services.export_pipeline import ExportCoordinator
from table_importer.services.import_pipeline import ImportCoordinator
from table_importer.services.wiring import (
    build_export_coordinator,
    build_import_coordinator,
)


def get_import_coordinator() -> ImportCoordinator:
    return build_import_coordinator()


def get_export_coordinator() -> ExportCoordinator:
    return build_export_coordinator()
