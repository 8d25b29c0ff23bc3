"""Import run status payloads."""

from datetime import datetime
from pydantic import BaseModel, Field


class JobStatus(BaseModel):
    id: str
    type: str = Field(..., description="import or export")
    mode: str = Field(..., description="sync|async")
    status: str = Field(..., description="pending|running|retrying|failed|completed")
    stage: str | None = Field(None, description="Last pipeline stage reached")
    stages: list[str] | None = Field(None, description="Stages passed through, oldest first")
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    tenant_id: str | None = None
    table_name: str | None = None
    rows_imported: int | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
