"""Abstract base class for ingestion job persistence.

The job store owns three private, per-job tables: the job row itself, its
immutable chunks and the fragments recorded for parsed chunks.  Every
mutation that the pipeline's guarantees depend on is a *conditional*
update, so two workers on the same job can never both succeed:

    claim_chunk      claim ordinal N only if unclaimed (or the claim is stale)
    record_fragment  store fragment N and advance progress only if
                     parsed_chunks == N
    transition       change status only if the current status is expected

Reads that take an ``organization_id`` return ``None`` for a job owned by
another organization, so callers fail closed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from typing import Any

from trainkb.models.fragment import ExtractionFragment
from trainkb.models.ingestion import (
    Chunk,
    GenerationLogEntry,
    IngestionJob,
    JobStatus,
    UploadedFile,
)

# Job columns that transition() may update alongside the status.
TRANSITION_FIELDS = frozenset(
    {"canonical_data", "parse_error", "generation_log", "generation_summary"}
)


class IJobStore(ABC):
    """Contract for ingestion job, chunk and fragment persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if they don't exist.  Called at startup."""

    @abstractmethod
    async def create_job(
        self,
        organization_id: str,
        files: list[UploadedFile],
        chunks: list[str],
    ) -> IngestionJob:
        """Create a job in ``uploaded`` status together with its chunks.

        The job row and all chunk rows are written in one transaction.
        """

    @abstractmethod
    async def get_job(self, job_id: str, organization_id: str) -> IngestionJob | None:
        """Return the job if it exists *and* belongs to ``organization_id``."""

    @abstractmethod
    async def list_jobs(self, organization_id: str, limit: int = 20) -> list[IngestionJob]:
        """Return the organization's most recent jobs, newest first."""

    @abstractmethod
    async def delete_job(self, job_id: str, organization_id: str) -> bool:
        """Delete a job with its chunks and fragments.  ``False`` if not found."""

    @abstractmethod
    async def get_chunk(self, job_id: str, ordinal: int) -> Chunk | None:
        """Return one chunk by ordinal."""

    @abstractmethod
    async def claim_chunk(
        self, job_id: str, ordinal: int, lease_seconds: float
    ) -> str | None:
        """Mark ``ordinal`` as claimed if it is the next unparsed chunk and unclaimed.

        A claim older than ``lease_seconds`` counts as abandoned and may be
        taken over.  Returns a token identifying this claim, or ``None`` if
        another caller holds it.
        """

    @abstractmethod
    async def release_claim(self, job_id: str, ordinal: int, claim: str) -> None:
        """Clear the claim on ``ordinal`` only if it is still the one identified by *claim*.

        A worker whose stale claim was taken over cannot release the new
        holder's claim.
        """

    @abstractmethod
    async def record_fragment(
        self,
        job_id: str,
        fragment: ExtractionFragment,
    ) -> IngestionJob | None:
        """Store a fragment and advance ``parsed_chunks`` atomically.

        Succeeds only when ``parsed_chunks == fragment.chunk_ordinal``; the
        claim is cleared in the same transaction.  Returns the updated job,
        or ``None`` if that ordinal was already recorded.
        """

    @abstractmethod
    async def list_fragments(self, job_id: str) -> list[ExtractionFragment]:
        """Return all recorded fragments in ordinal order."""

    @abstractmethod
    async def transition(
        self,
        job_id: str,
        expected: Collection[JobStatus],
        target: JobStatus,
        updates: Mapping[str, Any] | None = None,
    ) -> IngestionJob | None:
        """Set status to ``target`` if the current status is in ``expected``.

        ``updates`` may set any of :data:`TRANSITION_FIELDS` in the same
        statement.  Returns the updated job, or ``None`` if the status did
        not match (nothing is written).
        """

    @abstractmethod
    async def set_parse_error(self, job_id: str, message: str | None) -> None:
        """Record (or clear) the last parse failure message."""

    @abstractmethod
    async def append_generation_log(
        self,
        job_id: str,
        entry: GenerationLogEntry,
    ) -> list[GenerationLogEntry]:
        """Append one entry to the job's generation log and return the full log."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
