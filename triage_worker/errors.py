from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    details: Optional[str] = None


class TriageError(Exception):
    """Base for failures that map onto an HTTP error payload."""

    status_code = 500
    message = "internal error"

    def __init__(self, details: str = "", *, message: Optional[str] = None) -> None:
        super().__init__(details or message or self.message)
        self.details = details
        if message is not None:
            self.message = message


class TranscriptionFailure(TriageError):
    status_code = 500
    message = "Failed to process audio"


class ConversionFailure(TranscriptionFailure):
    """ffmpeg/soundfile could not produce the 16 kHz mono wav."""


class CategorizerFailure(TriageError):
    # Always absorbed by the keyword fallback; never rendered.
    message = "categorization failed"


class UploadRejected(TriageError):
    status_code = 400
    message = "File upload error"


class UploadTooLarge(UploadRejected):
    status_code = 413
    message = "File too large"


class ExportValidationError(TriageError):
    status_code = 400
    message = "Invalid export request"


class EmptyApprovalError(ExportValidationError):
    message = "No content provided"


class PersistenceError(TriageError):
    status_code = 500
    message = "Failed to save content"


class SessionNotFound(TriageError):
    status_code = 404
    message = "Session not found"


class SessionStateError(TriageError):
    status_code = 409
    message = "Invalid session state"


def install_error_handlers(app: FastAPI) -> None:
    log = logging.getLogger("app")

    @app.exception_handler(TriageError)
    async def _handle_triage_error(request: Request, exc: TriageError):  # type: ignore[unused-variable]
        if exc.status_code >= 500:
            log.error(f"{exc.message}: {exc.details}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message, details=exc.details or None).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def _handle_validation(request: Request, exc: RequestValidationError):  # type: ignore[unused-variable]
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="Invalid request", details=str(exc.errors())).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_exception(request: Request, exc: StarletteHTTPException):  # type: ignore[unused-variable]
        error = "Endpoint not found" if exc.status_code == 404 and exc.detail == "Not Found" else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=error).model_dump())

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception):  # type: ignore[unused-variable]
        log.exception("unhandled error")
        return JSONResponse(status_code=500, content=ErrorResponse(error="internal error").model_dump())
