"""Review loop between parsing and generation.

Once parsing finishes, a human reviewer may load the canonical data, edit
it and save it back any number of times before generating.  Saves replace
the stored data verbatim (last write wins, no partial merge) and move the
job to ``reviewing``.  Structure is not validated here: work-in-progress
edits are saveable, and the Generator validates before writing anything.
"""

from __future__ import annotations

from typing import Any

import structlog

from trainkb.interfaces.job_store import IJobStore
from trainkb.models.ingestion import IngestionJob, JobStatus
from trainkb.pipeline.state_machine import ensure_transition
from trainkb.utils.concurrency import KeyedLocks
from trainkb.utils.errors import InvalidStateError, JobNotFoundError
from trainkb.utils.logging import get_logger


class ReviewStore:
    """Loads and saves a job's canonical data for human review."""

    def __init__(self, job_store: IJobStore, job_locks: KeyedLocks | None = None) -> None:
        self._store = job_store
        self._locks = job_locks or KeyedLocks()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def load(self, job_id: str, organization_id: str) -> dict[str, Any]:
        """Return the job's canonical data.

        Raises
        ------
        JobNotFoundError
            If the job does not exist for this organization.
        InvalidStateError
            If parsing has not produced canonical data yet.
        """
        job = await self._get(job_id, organization_id)
        if job.canonical_data is None:
            raise InvalidStateError(
                message="Job has no parsed data yet",
                context={"job_id": job_id, "status": job.status.value, **job.progress()},
            )
        return job.canonical_data

    async def save(
        self,
        job_id: str,
        organization_id: str,
        edited: dict[str, Any],
    ) -> IngestionJob:
        """Replace the job's canonical data with *edited* and mark it ``reviewing``.

        Parameters
        ----------
        job_id:
            The job under review.
        organization_id:
            The caller's organization.
        edited:
            The full edited canonical data.  Stored as-is.

        Returns
        -------
        IngestionJob
            The updated job.

        Raises
        ------
        InvalidStateError
            If the job is not ``parsed`` or ``reviewing``.
        """
        async with self._locks.hold(job_id):
            job = await self._get(job_id, organization_id)
            ensure_transition(job.status, JobStatus.REVIEWING, job_id)

            updated = await self._store.transition(
                job_id,
                {JobStatus.PARSED, JobStatus.REVIEWING},
                JobStatus.REVIEWING,
                {"canonical_data": edited},
            )
            if updated is None:
                raise InvalidStateError(
                    message="Job status changed while saving review edits",
                    context={"job_id": job_id},
                )

        self._logger.info(
            "review_saved",
            job_id=job_id,
            organization_id=organization_id,
            sections=sorted(edited),
        )
        return updated

    async def _get(self, job_id: str, organization_id: str) -> IngestionJob:
        job = await self._store.get_job(job_id, organization_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job
