"""Pydantic request/response schemas for the knowledge-base API.

Request schemas end with ``Request`` and response schemas with
``Response``.  Job fields are projected from :class:`IngestionJob` by the
``from_job`` constructors so routes never hand-assemble response dicts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from trainkb.models.ingestion import GenerationLogEntry, IngestionJob, UploadedFile


class ProgressResponse(BaseModel):
    """Parsing progress of a job."""

    parsed_chunks: int
    total_chunks: int


class UploadResponse(BaseModel):
    """Response returned after an upload is accepted."""

    job_id: str
    status: str
    total_chunks: int
    files: list[UploadedFile]


class ParseResponse(BaseModel):
    """Response of one process-next-chunk call."""

    done: bool
    progress: ProgressResponse
    chunk_result: dict[str, int] | None = Field(
        default=None,
        description="package_count, guideline_count and topic_count of the chunk just parsed",
    )
    parsed_data: dict[str, Any] | None = None


class ParsedDataRequest(BaseModel):
    """Reviewer-edited canonical data.  Saved verbatim."""

    parsed_data: dict[str, Any]


class ParsedDataResponse(BaseModel):
    """The job's current canonical data."""

    job_id: str
    status: str
    parsed_data: dict[str, Any]


class GenerateResponse(BaseModel):
    """Result of a successful generation run."""

    success: bool = True
    job_id: str
    summary: dict[str, int]
    generation_log: list[GenerationLogEntry]


class JobStatusResponse(BaseModel):
    """Full status of one ingestion job."""

    job_id: str
    status: str
    progress: ProgressResponse
    files: list[UploadedFile]
    parse_error: str | None = None
    generation_log: list[GenerationLogEntry] = Field(default_factory=list)
    summary: dict[str, int] | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: IngestionJob) -> JobStatusResponse:
        return cls(
            job_id=job.id,
            status=job.status.value,
            progress=ProgressResponse(**job.progress()),
            files=job.files,
            parse_error=job.parse_error,
            generation_log=job.generation_log,
            summary=job.generation_summary,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobSummaryResponse(BaseModel):
    """One row of the upload history."""

    job_id: str
    status: str
    files: list[str]
    progress: ProgressResponse
    summary: dict[str, int] | None = None
    created_at: datetime

    @classmethod
    def from_job(cls, job: IngestionJob) -> JobSummaryResponse:
        return cls(
            job_id=job.id,
            status=job.status.value,
            files=[f.name for f in job.files],
            progress=ProgressResponse(**job.progress()),
            summary=job.generation_summary,
            created_at=job.created_at,
        )


class HistoryResponse(BaseModel):
    """The organization's most recent ingestion jobs, newest first."""

    jobs: list[JobSummaryResponse]
    total: int


class DeleteResponse(BaseModel):
    """Confirmation that a job was abandoned."""

    job_id: str
    deleted: bool = True


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
