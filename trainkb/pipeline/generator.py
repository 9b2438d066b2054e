"""Generation: persist a job's canonical data as the organization's corpus.

Generation replaces the organization's training corpus with the job's
canonical data in a fixed sequence of steps:

    validate         canonical data parses as a CanonicalCorpus
    clean            delete the organization's rows in CLEAN_ORDER
    packages         upsert service packages
    package_details  upsert objections and selling points
    guidelines       upsert sales guidelines
    curriculum       upsert courses, modules, then scenario templates in batches

Each step is one store transaction and appends a log entry to the job as
soon as it finishes.  The first failing step aborts the rest and moves the
job to ``failed``; because ``clean`` always runs before any insert, calling
generate again is a safe retry.  A structural validation error is raised
before the job leaves ``parsed``/``reviewing``, so the reviewer can still
fix the data.

Runs are serialized per job and per organization, so two jobs of the same
organization never interleave their delete/insert steps.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import NoReturn

import structlog
from pydantic import ValidationError

from trainkb.interfaces.corpus_store import ICorpusStore
from trainkb.interfaces.job_store import IJobStore
from trainkb.models.canonical import CanonicalCorpus, CanonicalScenarioTemplate
from trainkb.models.ingestion import (
    GenerationLogEntry,
    GenerationResult,
    IngestionJob,
    JobStatus,
    StepStatus,
)
from trainkb.pipeline.state_machine import ensure_transition, sources_for
from trainkb.utils.concurrency import KeyedLocks
from trainkb.utils.errors import GenerationStepError, InvalidStateError, JobNotFoundError
from trainkb.utils.logging import get_logger
from trainkb.utils.text_normalizer import normalize_key

# Children before parents: the corpus store enforces foreign keys without
# cascading deletes.
CLEAN_ORDER = (
    "scenario_templates",
    "package_selling_points",
    "package_objections",
    "course_modules",
    "courses",
    "service_packages",
    "sales_guidelines",
    "customer_profiles",
)

# Summary key -> corpus table counted for it.
SUMMARY_TABLES = {
    "packages": "service_packages",
    "objections": "package_objections",
    "selling_points": "package_selling_points",
    "guidelines": "sales_guidelines",
    "courses": "courses",
    "modules": "course_modules",
    "scenario_templates": "scenario_templates",
}

# Log step name for reading back the summary and marking the job complete.
FINALIZE_STEP = "finalize"

_GENERATABLE = sources_for(JobStatus.GENERATING)


@dataclass
class _GenerationRun:
    """Working state shared by the steps of one generation run."""

    job: IngestionJob
    corpus: CanonicalCorpus
    package_ids: dict[str, int] = field(default_factory=dict)
    log: list[GenerationLogEntry] = field(default_factory=list)

    @property
    def organization_id(self) -> str:
        return self.job.organization_id


class Generator:
    """Replaces an organization's training corpus with a job's canonical data."""

    def __init__(
        self,
        job_store: IJobStore,
        corpus_store: ICorpusStore,
        job_locks: KeyedLocks | None = None,
        organization_locks: KeyedLocks | None = None,
        batch_size: int = 50,
    ) -> None:
        self._jobs = job_store
        self._corpus = corpus_store
        self._job_locks = job_locks or KeyedLocks()
        self._org_locks = organization_locks or KeyedLocks()
        self._batch_size = max(1, batch_size)
        self._logger: structlog.BoundLogger = get_logger(__name__)

        self._steps: list[tuple[str, Callable[[_GenerationRun], Awaitable[str]]]] = [
            ("clean", self._clean),
            ("packages", self._packages),
            ("package_details", self._package_details),
            ("guidelines", self._guidelines),
            ("curriculum", self._curriculum),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(self, job_id: str, organization_id: str) -> GenerationResult:
        """Persist the job's canonical data, replacing the organization's corpus.

        Parameters
        ----------
        job_id:
            The job whose canonical data is generated.
        organization_id:
            The caller's organization.

        Returns
        -------
        GenerationResult
            Row counts read back from the corpus store and the step log.
            For a ``complete`` job the stored result is returned unchanged
            and the store is not touched.

        Raises
        ------
        JobNotFoundError
            If the job does not exist for this organization.
        InvalidStateError
            If the job has no canonical data or is in a status that cannot
            generate.  Raised before any side effect.
        GenerationStepError
            If a step failed; carries the step name and the log so far.

        Notes
        -----
        A job found in ``generating`` belongs to a run that died without
        reaching ``failed`` (crash, cancellation, a store error while marking
        the failure).  It is moved to ``failed`` and generated again.
        """
        async with self._job_locks.hold(job_id):
            job = await self._jobs.get_job(job_id, organization_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if job.status == JobStatus.COMPLETE:
                self._logger.info("generation_replayed", job_id=job_id)
                return GenerationResult(
                    job_id=job_id,
                    summary=job.generation_summary or {},
                    generation_log=job.generation_log,
                )

            if job.status == JobStatus.GENERATING:
                job = await self._recover_interrupted(job)

            if job.status not in _GENERATABLE or job.canonical_data is None:
                raise InvalidStateError(
                    message=f"Cannot generate from a job in status '{job.status.value}'",
                    context={
                        "job_id": job_id,
                        "status": job.status.value,
                        "has_parsed_data": job.canonical_data is not None,
                    },
                )

            corpus = self._validate(job)
            async with self._org_locks.hold(organization_id):
                return await self._run(job, corpus)

    # ------------------------------------------------------------------
    # Run orchestration
    # ------------------------------------------------------------------

    def _validate(self, job: IngestionJob) -> CanonicalCorpus:
        try:
            return CanonicalCorpus.model_validate(job.canonical_data)
        except ValidationError as exc:
            entry = GenerationLogEntry(
                step="validate",
                status=StepStatus.FAILED,
                detail=f"{exc.error_count()} structural error(s) in parsed data",
            )
            self._logger.warning(
                "generation_validation_failed",
                job_id=job.id,
                errors=exc.error_count(),
            )
            raise GenerationStepError(
                step="validate",
                message=str(exc),
                generation_log=[entry.model_dump(mode="json")],
            ) from exc

    async def _run(self, job: IngestionJob, corpus: CanonicalCorpus) -> GenerationResult:
        ensure_transition(job.status, JobStatus.GENERATING, job.id)
        started = await self._jobs.transition(
            job.id,
            {job.status},
            JobStatus.GENERATING,
            {"generation_log": [], "generation_summary": None},
        )
        if started is None:
            raise InvalidStateError(
                message="Job status changed before generation started",
                context={"job_id": job.id},
            )
        self._logger.info(
            "generation_started",
            job_id=job.id,
            organization_id=job.organization_id,
            **corpus.counts(),
        )

        # From here on every failure must leave the job in ``failed``.
        run = _GenerationRun(job=started, corpus=corpus)
        step = "validate"
        try:
            await self._record(run, step, StepStatus.DONE, "Parsed data is well-formed")
            for step, action in self._steps:
                detail = await action(run)
                await self._record(run, step, StepStatus.DONE, detail)

            step = FINALIZE_STEP
            rows = await self._corpus.count_rows(job.organization_id)
            summary = {key: rows.get(table, 0) for key, table in SUMMARY_TABLES.items()}
            done = await self._jobs.transition(
                job.id,
                {JobStatus.GENERATING},
                JobStatus.COMPLETE,
                {"generation_summary": summary},
            )
        except Exception as exc:
            await self._fail(run, step, exc)

        if done is None:
            raise InvalidStateError(
                message="Job status changed during generation",
                context={"job_id": job.id},
            )
        self._logger.info("generation_complete", job_id=job.id, **summary)
        return GenerationResult(job_id=job.id, summary=summary, generation_log=run.log)

    async def _recover_interrupted(self, job: IngestionJob) -> IngestionJob:
        # Called with the job lock held: no run of this job is in progress
        # in this process, so ``generating`` is left over from a dead run.
        recovered = await self._jobs.transition(
            job.id, {JobStatus.GENERATING}, JobStatus.FAILED
        )
        if recovered is None:
            raise InvalidStateError(
                message="Job status changed while recovering an interrupted generation",
                context={"job_id": job.id},
            )
        self._logger.warning(
            "generation_interrupted_recovered",
            job_id=job.id,
            last_step=job.generation_log[-1].step if job.generation_log else None,
        )
        return recovered

    async def _record(
        self,
        run: _GenerationRun,
        step: str,
        status: StepStatus,
        detail: str,
    ) -> None:
        entry = GenerationLogEntry(step=step, status=status, detail=detail)
        run.log = await self._jobs.append_generation_log(run.job.id, entry)
        self._logger.info(
            "generation_step",
            job_id=run.job.id,
            step=step,
            status=status.value,
            detail=detail,
        )

    async def _fail(self, run: _GenerationRun, step: str, exc: Exception) -> NoReturn:
        reason = str(exc) or type(exc).__name__
        entry = GenerationLogEntry(step=step, status=StepStatus.FAILED, detail=reason)
        try:
            run.log = await self._jobs.append_generation_log(run.job.id, entry)
        except Exception as log_exc:
            self._logger.error("generation_log_write_failed", job_id=run.job.id, error=str(log_exc))
            run.log = [*run.log, entry]
        try:
            await self._jobs.transition(run.job.id, {JobStatus.GENERATING}, JobStatus.FAILED)
        except Exception as status_exc:
            # The job stays ``generating`` until the next generate or delete
            # call recovers it.
            self._logger.error(
                "generation_fail_transition_failed",
                job_id=run.job.id,
                error=str(status_exc),
            )
        self._logger.error(
            "generation_step_failed",
            job_id=run.job.id,
            step=step,
            error=reason,
        )
        raise GenerationStepError(
            step=step,
            message=reason,
            generation_log=[e.model_dump(mode="json") for e in run.log],
        ) from exc

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _clean(self, run: _GenerationRun) -> str:
        # Ownership is re-checked right before anything is deleted.
        owned = await self._jobs.get_job(run.job.id, run.organization_id)
        if owned is None:
            raise JobNotFoundError(run.job.id)

        removed = 0
        for table in CLEAN_ORDER:
            removed += await self._corpus.delete_for_organization(table, run.organization_id)
        return f"Removed {removed} existing rows"

    async def _packages(self, run: _GenerationRun) -> str:
        run.package_ids = await self._corpus.upsert_packages(
            run.organization_id, run.corpus.packages
        )
        return f"Upserted {len(run.package_ids)} packages"

    async def _package_details(self, run: _GenerationRun) -> str:
        written = await self._corpus.upsert_package_details(run.package_ids, run.corpus.packages)
        return (
            f"Upserted {written['objections']} objections and "
            f"{written['selling_points']} selling points"
        )

    async def _guidelines(self, run: _GenerationRun) -> str:
        written = await self._corpus.upsert_guidelines(run.organization_id, run.corpus.guidelines)
        return f"Upserted {written} guidelines"

    async def _curriculum(self, run: _GenerationRun) -> str:
        courses = run.corpus.courses
        course_ids = await self._corpus.upsert_courses(run.organization_id, courses)
        module_ids = await self._corpus.upsert_modules(course_ids, courses)

        rows: list[tuple[int, int, CanonicalScenarioTemplate]] = []
        for course in courses:
            course_key = normalize_key(course.name)
            for module in course.modules:
                module_id = module_ids[(course_key, normalize_key(module.name))]
                for order, template in enumerate(module.scenario_templates):
                    rows.append((module_id, order, template))

        written = 0
        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            written += await self._corpus.upsert_scenario_templates(run.organization_id, batch)

        return (
            f"Upserted {len(course_ids)} courses, {len(module_ids)} modules "
            f"and {written} scenario templates"
        )
