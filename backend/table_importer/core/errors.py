"""Failure classes raised by the import/export pipelines.

Each class carries the HTTP status the API maps it to and a generic,
user-facing message. The raw diagnostic text (tool output, database errors)
travels in ``details`` and is logged server-side.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every pipeline failure."""

    status_code: int = 500
    public_message: str = "Import failed"

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else message


class ConfigurationError(PipelineError):
    """Converter missing or not executable, or a required backend is unset."""

    public_message = "Server configuration error"


class InputValidationError(PipelineError):
    status_code = 400
    public_message = "Invalid import request"


class ResourceBusyError(PipelineError):
    """Global conversion lock not obtained within the retry budget or deadline."""

    status_code = 503
    public_message = "Server is busy"


class TenantBusyError(PipelineError):
    """Another import or export for the same tenant is already running."""

    status_code = 409
    public_message = "Another import is already running for this tenant"


class StagingError(PipelineError):
    public_message = "Failed to prepare import directory"


class ConversionError(PipelineError):
    """Converter exited non-zero, could not be started, or produced no output."""

    public_message = "Conversion failed"

    def __init__(
        self,
        message: str,
        details: str | None = None,
        *,
        stdout: str = "",
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


class CsvParseError(PipelineError):
    public_message = "Converted file could not be parsed"


class DeletePhaseError(PipelineError):
    """Existing rows could not be removed; the table is unchanged."""

    public_message = "Failed to clear existing data"


class InsertPhaseError(PipelineError):
    """New rows could not be inserted after the delete phase ran."""

    public_message = "Failed to insert new data"

    def __init__(
        self, message: str, details: str | None = None, *, rolled_back: bool = False
    ) -> None:
        super().__init__(message, details)
        self.rolled_back = rolled_back


class StorageUploadError(PipelineError):
    public_message = "Failed to upload exported file"
