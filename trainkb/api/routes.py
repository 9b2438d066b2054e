"""FastAPI routes for knowledge-base ingestion.

Endpoint                                      Method  Description
--------------------------------------------  ------  ---------------------------------
/api/v1/knowledge-base/upload                 POST    Upload ≤3 documents → job
/api/v1/knowledge-base/{job_id}/parse         POST    Parse the next chunk
/api/v1/knowledge-base/{job_id}/data          GET     Load canonical data for review
/api/v1/knowledge-base/{job_id}/data          PUT     Save reviewed canonical data
/api/v1/knowledge-base/{job_id}/generate      POST    Replace the organization's corpus
/api/v1/knowledge-base/{job_id}/status        GET     Job status, progress and log
/api/v1/knowledge-base/history                GET     Recent jobs of the organization
/api/v1/knowledge-base/{job_id}               DELETE  Abandon a job
/api/v1/health                                GET     Health check

The caller's organization arrives in the ``X-Organization-Id`` header.
Services are resolved from ``app.state`` through ``Depends`` with the
``Annotated`` pattern; application errors are rendered by
``ErrorHandlingMiddleware``.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, UploadFile

from trainkb.api.schemas import (
    DeleteResponse,
    ErrorResponse,
    GenerateResponse,
    HealthResponse,
    HistoryResponse,
    JobStatusResponse,
    JobSummaryResponse,
    ParsedDataRequest,
    ParsedDataResponse,
    ParseResponse,
    ProgressResponse,
    UploadResponse,
)
from trainkb.config.loader import IngestionConfig
from trainkb.models.ingestion import IncomingFile
from trainkb.services.ingestion_service import IngestionService
from trainkb.utils.errors import UploadValidationError


# Mounted under /api/v1 by main.py.
router = APIRouter(prefix="/api/v1")
kb_router = APIRouter(prefix="/knowledge-base", tags=["knowledge-base"])


# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


def _get_ingestion_service(request: Request) -> IngestionService:
    """Return the ingestion service from application state."""
    return request.app.state.ingestion_service


def _get_ingestion_config(request: Request) -> IngestionConfig:
    """Return the ingestion limits from application state."""
    return request.app.state.ingestion_config


def _get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None,
) -> str:
    """Return the caller's organization from the ``X-Organization-Id`` header."""
    organization_id = (x_organization_id or "").strip()
    if not organization_id:
        raise HTTPException(status_code=401, detail="X-Organization-Id header is required")
    return organization_id


ServiceDep = Annotated[IngestionService, Depends(_get_ingestion_service)]
OrganizationDep = Annotated[str, Depends(_get_organization_id)]
IngestionConfigDep = Annotated[IngestionConfig, Depends(_get_ingestion_config)]

_ERRORS: dict[int | str, dict[str, Any]] = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Upload and parsing
# ---------------------------------------------------------------------------


@kb_router.post(
    "/upload",
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Upload company documents for ingestion",
)
async def upload_documents(
    files: list[UploadFile],
    service: ServiceDep,
    organization_id: OrganizationDep,
    config: IngestionConfigDep,
) -> UploadResponse:
    """Accept up to three PDF, DOCX or text files and create an ingestion job."""
    incoming = await _read_uploads(files, config)
    job = await service.upload(organization_id, incoming)
    return UploadResponse(
        job_id=job.id,
        status=job.status.value,
        total_chunks=job.total_chunks,
        files=job.files,
    )


async def _read_uploads(files: list[UploadFile], config: IngestionConfig) -> list[IncomingFile]:
    """Read the uploads, refusing oversized files before buffering them.

    The declared size is checked first; at most one byte past the limit is
    read from each file, so a missing or wrong declared size still cannot
    make the request hold more than the limit in memory.
    """
    limit = config.max_file_size_bytes
    incoming: list[IncomingFile] = []
    rejections: list[dict[str, str | None]] = []
    for upload in files:
        oversized = upload.size is not None and upload.size > limit
        data = b"" if oversized else await upload.read(limit + 1)
        if oversized or len(data) > limit:
            rejections.append(
                {
                    "file": upload.filename or None,
                    "reason": f"file exceeds {config.max_file_size_mb:g} MB limit",
                }
            )
            continue
        incoming.append(
            IncomingFile(
                name=upload.filename or "",
                content_type=upload.content_type or "",
                data=data,
            )
        )
    if rejections:
        raise UploadValidationError(
            f"{len(rejections)} of {len(files)} files rejected", rejections
        )
    return incoming


@kb_router.post(
    "/{job_id}/parse",
    response_model=ParseResponse,
    responses={**_ERRORS, 503: {"model": ErrorResponse}},
    summary="Parse the next chunk of a job",
)
async def parse_next_chunk(
    job_id: str,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> ParseResponse:
    """Extract the next unparsed chunk; ``done`` once every chunk is parsed."""
    result = await service.parse_next(job_id, organization_id)
    return ParseResponse(
        done=result.done,
        progress=ProgressResponse(**result.progress),
        chunk_result=result.chunk_result,
        parsed_data=result.parsed_data,
    )


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


@kb_router.get(
    "/{job_id}/data",
    response_model=ParsedDataResponse,
    responses=_ERRORS,
    summary="Load parsed data for review",
)
async def get_parsed_data(
    job_id: str,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> ParsedDataResponse:
    data = await service.get_data(job_id, organization_id)
    job = await service.status(job_id, organization_id)
    return ParsedDataResponse(job_id=job_id, status=job.status.value, parsed_data=data)


@kb_router.put(
    "/{job_id}/data",
    response_model=ParsedDataResponse,
    responses=_ERRORS,
    summary="Save reviewed parsed data",
)
async def save_parsed_data(
    job_id: str,
    body: ParsedDataRequest,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> ParsedDataResponse:
    """Replace the job's parsed data with the reviewer's edits."""
    job = await service.save_data(job_id, organization_id, body.parsed_data)
    return ParsedDataResponse(
        job_id=job_id,
        status=job.status.value,
        parsed_data=job.canonical_data or {},
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@kb_router.post(
    "/{job_id}/generate",
    response_model=GenerateResponse,
    responses={**_ERRORS, 500: {"model": ErrorResponse}},
    summary="Replace the organization's training corpus with the job's data",
)
async def generate_corpus(
    job_id: str,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> GenerateResponse:
    result = await service.generate(job_id, organization_id)
    return GenerateResponse(
        job_id=result.job_id,
        summary=result.summary,
        generation_log=result.generation_log,
    )


# ---------------------------------------------------------------------------
# Inspection and housekeeping
# ---------------------------------------------------------------------------


@kb_router.get(
    "/history",
    response_model=HistoryResponse,
    summary="List the organization's recent ingestion jobs",
)
async def job_history(
    service: ServiceDep,
    organization_id: OrganizationDep,
    limit: Annotated[int | None, Query(ge=1, le=100)] = None,
) -> HistoryResponse:
    jobs = await service.history(organization_id, limit)
    return HistoryResponse(
        jobs=[JobSummaryResponse.from_job(job) for job in jobs],
        total=len(jobs),
    )


@kb_router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a job's status, progress and generation log",
)
async def job_status(
    job_id: str,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> JobStatusResponse:
    job = await service.status(job_id, organization_id)
    return JobStatusResponse.from_job(job)


@kb_router.delete(
    "/{job_id}",
    response_model=DeleteResponse,
    responses=_ERRORS,
    summary="Abandon an ingestion job",
)
async def delete_job(
    job_id: str,
    service: ServiceDep,
    organization_id: OrganizationDep,
) -> DeleteResponse:
    await service.delete(job_id, organization_id)
    return DeleteResponse(job_id=job_id)


router.include_router(kb_router)


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version and provider availability."""
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    status = "healthy" if providers.get("llm") else "degraded"
    return HealthResponse(
        status=status,
        version=getattr(request.app.state, "version", "0.1.0"),
        providers=providers,
    )
