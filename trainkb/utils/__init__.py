"""Utility modules for trainkb.

- **errors** -- exception hierarchy rooted at TrainKBError; each pipeline
  stage raises its own subclass carrying resume context.
- **concurrency** -- per-key asyncio locks and timeout-bounded calls.
- **logging** -- structlog setup (console in development, JSON in production).
- **text_normalizer** -- natural-key normalization and coercion of loosely
  typed extraction output.
"""

from trainkb.utils.concurrency import KeyedLocks, call_with_timeout
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
from trainkb.utils.logging import configure_logging, get_logger, log_context
from trainkb.utils.text_normalizer import normalize_key

__all__ = [
    "ChunkClaimConflictError",
    "ConfigurationError",
    "ExtractionTransientError",
    "GenerationStepError",
    "InvalidStateError",
    "JobNotFoundError",
    "KeyedLocks",
    "LLMError",
    "SynthesisError",
    "TrainKBError",
    "UploadValidationError",
    "call_with_timeout",
    "configure_logging",
    "get_logger",
    "log_context",
    "normalize_key",
]
