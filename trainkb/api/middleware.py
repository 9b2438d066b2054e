"""API middleware: CORS, request logging and error handling.

Starlette runs middleware last-added-first, so ``main.py`` adds
ErrorHandlingMiddleware before RequestLoggingMiddleware; the logger then
sees the final status code of every response, including error bodies.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from trainkb.api.schemas import ErrorResponse
from trainkb.utils.errors import (
    ChunkClaimConflictError,
    ConfigurationError,
    ExtractionTransientError,
    GenerationStepError,
    InvalidStateError,
    JobNotFoundError,
    LLMError,
    SynthesisError,
    TrainKBError,
    UploadValidationError,
)
from trainkb.utils.logging import get_logger, log_context

_logger: structlog.BoundLogger = get_logger(__name__)

# Most specific class first: ChunkClaimConflictError is an
# ExtractionTransientError.
_STATUS_CODES: tuple[tuple[type[TrainKBError], int], ...] = (
    (UploadValidationError, 400),
    (JobNotFoundError, 404),
    (ChunkClaimConflictError, 409),
    (InvalidStateError, 409),
    (ExtractionTransientError, 503),
    (LLMError, 502),
    (SynthesisError, 500),
    (GenerationStepError, 500),
    (ConfigurationError, 500),
)


def status_code_for(exc: TrainKBError) -> int:
    """Return the HTTP status code for an application error."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware; all origins are allowed unless restricted."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with its status code and duration.

    The caller's organization is bound to the log context for the whole
    request, so pipeline events logged while serving it carry it too.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        status = 500
        with log_context(organization_id=request.headers.get("x-organization-id")):
            try:
                response = await call_next(request)
                status = response.status_code
                return response
            finally:
                _logger.info(
                    "http_request",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``TrainKBError`` subclasses into structured JSON errors.

    The body carries the exception class name, its message and its
    ``context`` (progress, rejections, the partial generation log), which
    the client needs to resume.  Other exceptions fall through to
    FastAPI's default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except TrainKBError as exc:
            status_code = status_code_for(exc)
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status_code,
                path=str(request.url.path),
            )
            body = ErrorResponse(
                error=type(exc).__name__,
                detail=exc.message,
                context=exc.context,
            )
            return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
