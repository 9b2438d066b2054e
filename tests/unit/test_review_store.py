"""Unit tests for the ReviewStore load/save loop."""

from __future__ import annotations

import pytest
from conftest import ORG, OTHER_ORG, sample_canonical

from trainkb.models.ingestion import JobStatus
from trainkb.pipeline.review_store import ReviewStore
from trainkb.utils.errors import InvalidStateError, JobNotFoundError


@pytest.mark.asyncio
async def test_load_returns_canonical_data(job_store, make_job):
    job = await make_job(canonical=sample_canonical())
    review = ReviewStore(job_store)

    assert await review.load(job.id, ORG) == sample_canonical()


@pytest.mark.asyncio
async def test_load_before_parsing_is_invalid(job_store, make_job):
    job = await make_job()
    with pytest.raises(InvalidStateError, match="no parsed data"):
        await ReviewStore(job_store).load(job.id, ORG)


@pytest.mark.asyncio
async def test_load_foreign_job_not_found(job_store, make_job):
    job = await make_job(canonical=sample_canonical(), organization_id=OTHER_ORG)
    with pytest.raises(JobNotFoundError):
        await ReviewStore(job_store).load(job.id, ORG)


@pytest.mark.asyncio
async def test_save_replaces_data_and_marks_reviewing(job_store, make_job):
    job = await make_job(canonical=sample_canonical())
    review = ReviewStore(job_store)
    edited = sample_canonical()
    edited["packages"] = edited["packages"][:1]

    updated = await review.save(job.id, ORG, edited)

    assert updated.status == JobStatus.REVIEWING
    assert updated.canonical_data == edited
    assert await review.load(job.id, ORG) == edited


@pytest.mark.asyncio
async def test_last_save_wins_and_partial_edits_are_kept_verbatim(job_store, make_job):
    job = await make_job(canonical=sample_canonical())
    review = ReviewStore(job_store)

    await review.save(job.id, ORG, {"packages": [{"name": "Draft"}]})
    # Work in progress: structurally incomplete data is still saveable.
    await review.save(job.id, ORG, {"packages": [{"name": ""}], "notes": "todo"})

    assert await review.load(job.id, ORG) == {"packages": [{"name": ""}], "notes": "todo"}
    assert (await job_store.get_job(job.id, ORG)).status == JobStatus.REVIEWING


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [JobStatus.GENERATING, JobStatus.COMPLETE, JobStatus.FAILED])
async def test_save_outside_review_window_is_invalid(job_store, make_job, status):
    job = await make_job(canonical=sample_canonical(), status=status)

    with pytest.raises(InvalidStateError):
        await ReviewStore(job_store).save(job.id, ORG, {"packages": []})

    stored = await job_store.get_job(job.id, ORG)
    assert stored.status == status
    assert stored.canonical_data == sample_canonical()
