"""Track import/export runs for the dashboard activity log."""

import uuid

from sqlalchemy import JSON, Column, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from table_importer.db.base import Base


class ImportRun(Base):
    __tablename__ = "import_runs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(16), nullable=False, default="import")
    mode = Column(String(16), nullable=False, default="sync")
    tenant_id = Column(String(128), nullable=False, index=True)
    table_name = Column(String(64), nullable=False)
    table_id = Column(String(128))
    status = Column(String(32), nullable=False, default="running")
    stage = Column(String(32), nullable=False, default="Idle")
    rows_imported = Column(Integer, default=0)
    error_message = Column(Text)
    meta = Column(JSON)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True))
