# payout_recon/errors.py
# Domain errors raised by the core; routes turn them into HTTPException.

from __future__ import annotations

from fastapi import HTTPException


class ReconError(Exception):
    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    @property
    def detail(self) -> dict:
        return {"error": self.error, "message": self.message, **self.extra}


class UnsupportedFileType(ReconError):
    status_code = 400
    error = "Unsupported file type"


class FileParseError(ReconError):
    status_code = 400
    error = "Could not parse file"


class MappingIncomplete(ReconError):
    status_code = 400
    error = "Missing required column mappings"

    def __init__(self, missing_fields: list[str]):
        super().__init__(
            f"Please map the following required columns: {', '.join(missing_fields)}",
            missingFields=list(missing_fields),
        )
        self.missing_fields = list(missing_fields)


class UnknownHeaders(ReconError):
    status_code = 400
    error = "Mapped columns not in file"

    def __init__(self, unknown_headers: list[str]):
        super().__init__(
            f"These columns are not in the uploaded file: {', '.join(unknown_headers)}",
            unknownHeaders=list(unknown_headers),
        )
        self.unknown_headers = list(unknown_headers)


class MappingNotSet(ReconError):
    status_code = 400
    error = "Column mapping not set"


class UploadNotFound(ReconError):
    status_code = 404
    error = "File not found"


class UploadExpired(ReconError):
    """Raw rows are gone (restart or retention); the client must upload again."""

    status_code = 410
    error = "File data not available"

    def __init__(self, message: str, **extra):
        super().__init__(message, action="reupload", **extra)


class NotFound(ReconError):
    status_code = 404
    error = "Not found"


def http_error(e: ReconError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)
