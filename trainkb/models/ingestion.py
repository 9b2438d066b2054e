"""Ingestion job models: status, job record, chunks, generation log.

All models use frozen config: the job store returns a fresh
:class:`IngestionJob` snapshot on every read, and callers derive updated
copies with ``model_copy(update={...})`` rather than mutating.

Architecture note:
    The job row is the single source of truth for progress.  The parsing
    position (``parsed_chunks`` plus the ``claimed_chunk`` marker) lives in
    the store, never in process memory, so any worker can resume a job.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# JobStatus: the states of the ingestion state machine.
# ---------------------------------------------------------------------------
class JobStatus(str, Enum):
    """Status of an ingestion job.

    Forward path:
        UPLOADED → PARSING → PARSED → REVIEWING → GENERATING → COMPLETE

    PARSING and GENERATING may fall into FAILED; FAILED may retry into
    PARSING or GENERATING.  Allowed transitions are defined in
    ``trainkb/pipeline/state_machine.py``.
    """

    UPLOADED = "uploaded"      # Files accepted, chunks stored
    PARSING = "parsing"        # Chunks being extracted one at a time
    PARSED = "parsed"          # All chunks extracted, canonical data synthesized
    REVIEWING = "reviewing"    # Reviewer has saved edits at least once
    GENERATING = "generating"  # Corpus replacement in progress
    COMPLETE = "complete"      # Corpus persisted (terminal)
    FAILED = "failed"          # Synthesis or a generation step failed


# Statuses in which canonical_data has been produced.
CANONICAL_STATUSES = frozenset(
    {JobStatus.PARSED, JobStatus.REVIEWING, JobStatus.GENERATING, JobStatus.COMPLETE}
)


class StepStatus(str, Enum):  # noqa: UP042
    """Outcome of one generation step."""

    DONE = "done"
    FAILED = "failed"


class IncomingFile(BaseModel):
    """One uploaded file as received, before validation and text extraction."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_type: str = ""
    data: bytes = b""

    @property
    def size(self) -> int:
        return len(self.data)


class UploadedFile(BaseModel):
    """Metadata about one accepted upload file (the bytes are not kept)."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_type: str
    size: int = Field(ge=0)
    text_length: int = Field(default=0, ge=0)


class GenerationLogEntry(BaseModel):
    """One step record in a job's generation log."""

    model_config = ConfigDict(frozen=True)

    step: str
    status: StepStatus
    detail: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)


class Chunk(BaseModel):
    """A bounded slice of extracted document text.  Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    # 0-based position in the job's chunk sequence.
    ordinal: int = Field(ge=0)
    text: str


class IngestionJob(BaseModel):
    """Snapshot of an ingestion job as stored in the job store."""

    model_config = ConfigDict(frozen=True)

    id: str
    organization_id: str
    status: JobStatus = JobStatus.UPLOADED
    files: list[UploadedFile] = Field(default_factory=list)
    total_chunks: int = Field(default=0, ge=0)
    parsed_chunks: int = Field(default=0, ge=0)
    # Ordinal currently claimed by a worker, if any, and when it was claimed.
    claimed_chunk: int | None = None
    claimed_at: datetime | None = None
    # Canonical structure as a plain JSON-able dict.  Kept untyped so the
    # review loop can save work-in-progress edits verbatim.
    canonical_data: dict[str, Any] | None = None
    parse_error: str | None = None
    generation_log: list[GenerationLogEntry] = Field(default_factory=list)
    generation_summary: dict[str, int] | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _check_progress(self) -> IngestionJob:
        if self.parsed_chunks > self.total_chunks:
            msg = (
                f"parsed_chunks ({self.parsed_chunks}) exceeds "
                f"total_chunks ({self.total_chunks})"
            )
            raise ValueError(msg)
        return self

    @property
    def is_fully_parsed(self) -> bool:
        return self.parsed_chunks >= self.total_chunks

    def progress(self) -> dict[str, int]:
        """Return the ``{parsed_chunks, total_chunks}`` progress pair."""
        return {"parsed_chunks": self.parsed_chunks, "total_chunks": self.total_chunks}


class ParseResult(BaseModel):
    """Outcome of one process-next-chunk call."""

    model_config = ConfigDict(frozen=True)

    done: bool
    progress: dict[str, int]
    # Present while parsing: counts of what the chunk just processed yielded.
    chunk_result: dict[str, int] | None = None
    # Present once done: the job's current canonical data.
    parsed_data: dict[str, Any] | None = None


class GenerationResult(BaseModel):
    """Outcome of a successful generation run."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    summary: dict[str, int]
    generation_log: list[GenerationLogEntry]
