"""Database models package."""
from table_importer.db.models.import_run import ImportRun

__all__ = ["ImportRun"]
