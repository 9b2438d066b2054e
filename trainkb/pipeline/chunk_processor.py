"""Incremental chunk processing for ingestion jobs.

Callers drive parsing one chunk at a time (pull model).  Each call to
:meth:`ChunkProcessor.process_next` works on exactly the lowest unparsed
ordinal:

    1. take the per-job lock (in-process serialization)
    2. claim the ordinal in the store (cross-process serialization)
    3. run the extraction engine under a timeout
    4. record the fragment and advance ``parsed_chunks`` in one transaction

A failed or timed-out extraction releases the claim, records
``parse_error`` and leaves progress untouched, so the next call retries the
same chunk.  When the last chunk is recorded the same call re-reads every
fragment, runs the Synthesizer and moves the job to ``parsed``.
"""

from __future__ import annotations

from typing import Any

import structlog

from trainkb.interfaces.extraction_engine import IExtractionEngine
from trainkb.interfaces.job_store import IJobStore
from trainkb.models.ingestion import (
    CANONICAL_STATUSES,
    IngestionJob,
    JobStatus,
    ParseResult,
)
from trainkb.pipeline.state_machine import ensure_transition
from trainkb.services.synthesizer import Synthesizer
from trainkb.utils.concurrency import KeyedLocks, call_with_timeout
from trainkb.utils.errors import (
    ChunkClaimConflictError,
    ExtractionTransientError,
    InvalidStateError,
    JobNotFoundError,
    SynthesisError,
)
from trainkb.utils.logging import get_logger


class ChunkProcessor:
    """Processes the next unparsed chunk of a job and finalizes parsing."""

    def __init__(
        self,
        job_store: IJobStore,
        extraction_engine: IExtractionEngine,
        synthesizer: Synthesizer | None = None,
        job_locks: KeyedLocks | None = None,
        extraction_timeout: float = 120.0,
        claim_lease_seconds: float = 300.0,
    ) -> None:
        self._store = job_store
        self._engine = extraction_engine
        self._synthesizer = synthesizer or Synthesizer()
        self._locks = job_locks or KeyedLocks()
        self._extraction_timeout = extraction_timeout
        self._claim_lease_seconds = claim_lease_seconds
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_next(self, job_id: str, organization_id: str) -> ParseResult:
        """Extract the next unparsed chunk of a job.

        Parameters
        ----------
        job_id:
            The ingestion job to advance.
        organization_id:
            The caller's organization; a job owned by another organization
            is reported as not found.

        Returns
        -------
        ParseResult
            ``done=False`` with the chunk's counts while chunks remain;
            ``done=True`` with the canonical data once parsing is finished.
            Calls after completion return ``done=True`` without touching
            progress or the extraction engine.

        Raises
        ------
        JobNotFoundError
            If the job does not exist for this organization.
        ChunkClaimConflictError
            If another worker currently holds the claim on the next chunk.
        ExtractionTransientError
            If the engine call failed or timed out.  Progress is unchanged.
        SynthesisError
            If merging the fragments failed.  The job moves to ``failed``.
        """
        async with self._locks.hold(job_id):
            job = await self._store.get_job(job_id, organization_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if self._is_done(job):
                return ParseResult(
                    done=True,
                    progress=job.progress(),
                    parsed_data=job.canonical_data,
                )

            job = await self._enter_parsing(job)

            if job.is_fully_parsed:
                # A previous call recorded the last fragment but did not
                # finish synthesis.
                return await self._finalize(job, chunk_result=None)

            return await self._process_chunk(job)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _is_done(job: IngestionJob) -> bool:
        if job.status in CANONICAL_STATUSES:
            return True
        # Generation failed: parsing already produced canonical data.
        return job.status == JobStatus.FAILED and job.canonical_data is not None

    async def _enter_parsing(self, job: IngestionJob) -> IngestionJob:
        if job.status == JobStatus.PARSING:
            return job
        ensure_transition(job.status, JobStatus.PARSING, job.id)
        updated = await self._store.transition(
            job.id, {job.status}, JobStatus.PARSING, {"parse_error": None}
        )
        if updated is None:
            raise InvalidStateError(
                message="Job status changed while starting to parse",
                context={"job_id": job.id, **job.progress()},
            )
        self._logger.info("parsing_started", job_id=job.id, total_chunks=job.total_chunks)
        return updated

    async def _process_chunk(self, job: IngestionJob) -> ParseResult:
        ordinal = job.parsed_chunks
        context: dict[str, Any] = {"job_id": job.id, "ordinal": ordinal, **job.progress()}

        claim = await self._store.claim_chunk(job.id, ordinal, self._claim_lease_seconds)
        if claim is None:
            raise ChunkClaimConflictError(context=context)

        chunk = await self._store.get_chunk(job.id, ordinal)
        if chunk is None:
            await self._store.release_claim(job.id, ordinal, claim)
            raise InvalidStateError(message=f"Chunk {ordinal} is missing", context=context)

        try:
            fragment = await call_with_timeout(
                self._engine.extract(chunk.text, ordinal, job.total_chunks),
                self._extraction_timeout,
            )
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            await self._store.release_claim(job.id, ordinal, claim)
            await self._store.set_parse_error(job.id, f"Chunk {ordinal}: {reason}")
            self._logger.warning(
                "chunk_extraction_failed",
                job_id=job.id,
                ordinal=ordinal,
                engine=self._engine.get_engine_name(),
                error=reason,
            )
            raise ExtractionTransientError(
                message=f"Extraction of chunk {ordinal} failed: {reason}",
                provider_name=self._engine.get_engine_name(),
                context=context,
            ) from exc

        if fragment.chunk_ordinal != ordinal:
            fragment = fragment.model_copy(update={"chunk_ordinal": ordinal})

        updated = await self._store.record_fragment(job.id, fragment)
        if updated is None:
            raise ChunkClaimConflictError(
                message=f"Chunk {ordinal} was already recorded by another worker",
                context=context,
            )

        chunk_result = fragment.counts()
        self._logger.info(
            "chunk_parsed",
            job_id=job.id,
            ordinal=ordinal,
            parsed_chunks=updated.parsed_chunks,
            total_chunks=updated.total_chunks,
            **chunk_result,
        )

        if updated.is_fully_parsed:
            return await self._finalize(updated, chunk_result=chunk_result)
        return ParseResult(done=False, progress=updated.progress(), chunk_result=chunk_result)

    async def _finalize(
        self,
        job: IngestionJob,
        chunk_result: dict[str, int] | None,
    ) -> ParseResult:
        fragments = await self._store.list_fragments(job.id)
        try:
            corpus = self._synthesizer.synthesize(fragments)
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            ensure_transition(job.status, JobStatus.FAILED, job.id)
            await self._store.transition(
                job.id,
                {JobStatus.PARSING},
                JobStatus.FAILED,
                {"parse_error": f"Synthesis failed: {reason}"},
            )
            self._logger.error("synthesis_failed", job_id=job.id, error=reason)
            raise SynthesisError(
                message=f"Synthesis failed: {reason}",
                context={"job_id": job.id, **job.progress()},
            ) from exc

        canonical_data = corpus.model_dump(mode="json")
        ensure_transition(job.status, JobStatus.PARSED, job.id)
        updated = await self._store.transition(
            job.id,
            {JobStatus.PARSING},
            JobStatus.PARSED,
            {"canonical_data": canonical_data, "parse_error": None},
        )
        if updated is None:
            raise InvalidStateError(
                message="Job status changed during synthesis",
                context={"job_id": job.id, **job.progress()},
            )

        self._logger.info("parsing_complete", job_id=job.id, **corpus.counts())
        return ParseResult(
            done=True,
            progress=updated.progress(),
            chunk_result=chunk_result,
            parsed_data=canonical_data,
        )
