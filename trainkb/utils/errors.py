"""Custom exception hierarchy for trainkb.

All application exceptions inherit from :class:`TrainKBError`, which carries
a human-readable message, an optional ``provider_name`` (which external
service failed, e.g. "anthropic") and a ``context`` dict with whatever a
caller needs to resume: current progress, the failing step, the partial
generation log.

The hierarchy follows the ingestion stages:

    TrainKBError
    +-- UploadValidationError      (upload: bad files, nothing persisted)
    +-- JobNotFoundError           (unknown job or other organization's job)
    +-- InvalidStateError          (operation not allowed in current status)
    +-- ExtractionTransientError   (one chunk failed or timed out, retryable)
    |   +-- ChunkClaimConflictError  (another worker holds the chunk claim)
    +-- SynthesisError             (merging fragments failed; a defect)
    +-- GenerationStepError        (a delete/insert step failed)
    +-- LLMError                   (LLM API call failure)
    +-- ConfigurationError         (startup / missing config)

The API layer maps each class to an HTTP status in
``trainkb/api/middleware.py``.
"""

from __future__ import annotations

from typing import Any


class TrainKBError(Exception):
    """Base exception for all trainkb errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        self._context = dict(context or {})
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def context(self) -> dict[str, Any]:
        return self._context

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Upload / lookup
# ---------------------------------------------------------------------------

class UploadValidationError(TrainKBError):
    """Raised when an upload is rejected.  No job state is created.

    ``rejections`` lists one ``{"file": name, "reason": text}`` entry per
    offending file (or a single entry with ``file=None`` for request-level
    problems such as too many files).
    """

    def __init__(
        self,
        message: str = "Upload rejected",
        rejections: list[dict[str, Any]] | None = None,
    ) -> None:
        self.rejections: list[dict[str, Any]] = list(rejections or [])
        super().__init__(message=message, context={"rejections": self.rejections})


class JobNotFoundError(TrainKBError):
    """Raised when a job does not exist for the calling organization."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(message=f"Ingestion job not found: {job_id}", context={"job_id": job_id})


class InvalidStateError(TrainKBError):
    """Raised when an operation is not allowed in the job's current status.

    Always raised before any side effect.
    """

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, context=context)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class ExtractionTransientError(TrainKBError):
    """Raised when one chunk's extraction failed or timed out.

    The chunk stays unparsed and the job stays ``parsing``; calling
    process-next again retries the same ordinal.
    """

    def __init__(
        self,
        message: str = "Chunk extraction failed",
        provider_name: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, context=context)


class ChunkClaimConflictError(ExtractionTransientError):
    """Raised when another worker currently holds the claim on the next chunk."""

    def __init__(
        self,
        message: str = "Chunk is being processed by another worker",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, context=context)


class SynthesisError(TrainKBError):
    """Raised when merging fragments into the canonical structure fails."""

    def __init__(
        self,
        message: str = "Synthesis failed",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, context=context)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class GenerationStepError(TrainKBError):
    """Raised when a generation step fails.

    Carries the failing ``step`` and the ``generation_log`` written so far.
    Re-running generation is safe because the first step always deletes the
    organization's corpus before inserting.
    """

    def __init__(
        self,
        step: str,
        message: str,
        generation_log: list[dict[str, Any]] | None = None,
    ) -> None:
        self.step = step
        self.generation_log: list[dict[str, Any]] = list(generation_log or [])
        super().__init__(
            message=f"Generation step '{step}' failed: {message}",
            context={"step": step, "generation_log": self.generation_log},
        )


# ---------------------------------------------------------------------------
# Providers / configuration
# ---------------------------------------------------------------------------

class LLMError(TrainKBError):
    """Raised when an LLM API call fails or returns no usable content."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(TrainKBError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
