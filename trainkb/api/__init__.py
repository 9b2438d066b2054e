"""trainkb API layer: routes, schemas and middleware."""

from trainkb.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from trainkb.api.routes import router
from trainkb.api.schemas import (
    ErrorResponse,
    GenerateResponse,
    HealthResponse,
    JobStatusResponse,
    ParseResponse,
    UploadResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "ErrorResponse",
    "GenerateResponse",
    "HealthResponse",
    "JobStatusResponse",
    "ParseResponse",
    "RequestLoggingMiddleware",
    "UploadResponse",
    "configure_cors",
    "router",
]
