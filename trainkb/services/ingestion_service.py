"""Knowledge-base ingestion facade.

One entry point per user-facing operation, shared by the HTTP routes and
the CLI: upload, parse the next chunk, load and save review data, generate,
status, history and delete.  Every operation is scoped by the caller's
organization; a job belonging to another organization is reported as not
found.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from trainkb.config.loader import IngestionConfig
from trainkb.interfaces.job_store import IJobStore
from trainkb.models.ingestion import (
    GenerationResult,
    IncomingFile,
    IngestionJob,
    JobStatus,
    ParseResult,
)
from trainkb.pipeline.chunk_processor import ChunkProcessor
from trainkb.pipeline.generator import Generator
from trainkb.pipeline.review_store import ReviewStore
from trainkb.services.document_extractor import DocumentExtractor
from trainkb.utils.concurrency import KeyedLocks
from trainkb.utils.errors import InvalidStateError, JobNotFoundError
from trainkb.utils.logging import get_logger


class IngestionService:
    """Coordinates the ingestion components behind one API."""

    def __init__(
        self,
        job_store: IJobStore,
        document_extractor: DocumentExtractor,
        chunk_processor: ChunkProcessor,
        review_store: ReviewStore,
        generator: Generator,
        job_locks: KeyedLocks,
        config: IngestionConfig | None = None,
    ) -> None:
        self._jobs = job_store
        self._extractor = document_extractor
        self._processor = chunk_processor
        self._review = review_store
        self._generator = generator
        self._job_locks = job_locks
        self._config = config or IngestionConfig()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Upload and parsing
    # ------------------------------------------------------------------

    async def upload(
        self,
        organization_id: str,
        files: Sequence[IncomingFile],
    ) -> IngestionJob:
        """Validate and chunk the files, then create a job in ``uploaded``.

        Raises
        ------
        UploadValidationError
            If any file is rejected.  No job is created.
        """
        metadata, chunks = await self._extractor.extract(files)
        job = await self._jobs.create_job(organization_id, metadata, chunks)
        self._logger.info(
            "upload_accepted",
            job_id=job.id,
            organization_id=organization_id,
            files=[f.name for f in metadata],
            total_chunks=job.total_chunks,
        )
        return job

    async def parse_next(self, job_id: str, organization_id: str) -> ParseResult:
        """Process the job's next chunk (see :class:`ChunkProcessor`)."""
        return await self._processor.process_next(job_id, organization_id)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def get_data(self, job_id: str, organization_id: str) -> dict[str, Any]:
        return await self._review.load(job_id, organization_id)

    async def save_data(
        self,
        job_id: str,
        organization_id: str,
        parsed_data: dict[str, Any],
    ) -> IngestionJob:
        return await self._review.save(job_id, organization_id, parsed_data)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, job_id: str, organization_id: str) -> GenerationResult:
        return await self._generator.generate(job_id, organization_id)

    # ------------------------------------------------------------------
    # Inspection and housekeeping
    # ------------------------------------------------------------------

    async def status(self, job_id: str, organization_id: str) -> IngestionJob:
        job = await self._jobs.get_job(job_id, organization_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def history(self, organization_id: str, limit: int | None = None) -> list[IngestionJob]:
        """Return the organization's most recent jobs, newest first."""
        return await self._jobs.list_jobs(organization_id, limit or self._config.history_limit)

    async def delete(self, job_id: str, organization_id: str) -> None:
        """Abandon a job.  Its chunks and fragments are deleted with it.

        The organization's generated corpus is not affected.  A job left in
        ``generating`` by an interrupted run can be deleted; one whose
        generation is running right now cannot.

        Raises
        ------
        InvalidStateError
            If the job is being generated.
        """
        if self._job_locks.is_held(job_id):
            job = await self.status(job_id, organization_id)
            if job.status == JobStatus.GENERATING:
                raise InvalidStateError(
                    message="Cannot delete a job while it is generating",
                    context={"job_id": job_id, "status": job.status.value},
                )

        async with self._job_locks.hold(job_id):
            job = await self.status(job_id, organization_id)
            deleted = await self._jobs.delete_job(job_id, organization_id)
            if not deleted:
                raise JobNotFoundError(job_id)
        self._logger.info(
            "job_abandoned",
            job_id=job_id,
            organization_id=organization_id,
            status=job.status.value,
        )
