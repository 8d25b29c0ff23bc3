"""Payloads for the import and export endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class ImportResponse(BaseModel):
    success: bool = True


class ImportAccepted(BaseModel):
    success: bool = True
    job_id: str = Field(..., serialization_alias="jobId")
    status_url: str = Field(..., serialization_alias="statusUrl")


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class ExportRequest(BaseModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    table_name: str = Field(..., alias="tableName", min_length=1)
    table_id: str | None = Field(None, alias="tableId")

    model_config = ConfigDict(populate_by_name=True)


class ExportResponse(BaseModel):
    success: bool = True
    file_path: str = Field(..., serialization_alias="filePath")
    download_url: str = Field(..., serialization_alias="downloadUrl")
