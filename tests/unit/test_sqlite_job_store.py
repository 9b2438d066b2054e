"""Unit tests for SQLiteJobStore.

Runs against a temporary SQLite file per test.  Covers job CRUD, the
conditional chunk claim, fragment recording, compare-and-set transitions
and the generation log.
"""

from __future__ import annotations

import pytest
from conftest import ORG, OTHER_ORG

from trainkb.models.fragment import ExtractionFragment
from trainkb.models.ingestion import GenerationLogEntry, JobStatus, StepStatus
from trainkb.providers.store.sqlite_job_store import SQLiteJobStore
from trainkb.utils.errors import JobNotFoundError


class _VanishingJobStore(SQLiteJobStore):
    """Loses every job between the insert and the read-back."""

    async def _fetch_job(self, job_id):
        return None


# ─── Initialization ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_double_initialize_is_idempotent(job_store):
    await job_store.initialize()
    assert job_store.get_provider_name() == "sqlite_job_store"


# ─── Jobs ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_get_job(job_store, make_job):
    job = await make_job(["a", "b", "c"])

    assert job.status == JobStatus.UPLOADED
    assert job.total_chunks == 3
    assert job.parsed_chunks == 0
    assert job.files[0].name == "handbook.txt"

    fetched = await job_store.get_job(job.id, ORG)
    assert fetched == job


@pytest.mark.asyncio
async def test_other_organization_cannot_see_job(job_store, make_job):
    job = await make_job()
    assert await job_store.get_job(job.id, OTHER_ORG) is None
    assert await job_store.delete_job(job.id, OTHER_ORG) is False


@pytest.mark.asyncio
async def test_list_jobs_newest_first_with_limit(job_store, make_job):
    first = await make_job()
    second = await make_job()
    await make_job(organization_id=OTHER_ORG)

    jobs = await job_store.list_jobs(ORG)
    assert [j.id for j in jobs] == [second.id, first.id]
    assert len(await job_store.list_jobs(ORG, limit=1)) == 1


@pytest.mark.asyncio
async def test_create_job_raises_when_read_back_finds_nothing(db_path):
    store = _VanishingJobStore(db_path=db_path)
    await store.initialize()

    with pytest.raises(JobNotFoundError):
        await store.create_job(ORG, [], ["chunk"])


@pytest.mark.asyncio
async def test_chunks_are_stored_in_order(job_store, make_job):
    job = await make_job(["zero", "one"])
    chunk = await job_store.get_chunk(job.id, 1)
    assert chunk is not None
    assert chunk.text == "one"
    assert await job_store.get_chunk(job.id, 2) is None


@pytest.mark.asyncio
async def test_delete_removes_chunks_and_fragments(job_store, make_job):
    job = await make_job(["zero"])
    assert await job_store.claim_chunk(job.id, 0, lease_seconds=60)
    await job_store.record_fragment(job.id, ExtractionFragment(chunk_ordinal=0))

    assert await job_store.delete_job(job.id, ORG) is True
    assert await job_store.get_job(job.id, ORG) is None
    assert await job_store.get_chunk(job.id, 0) is None
    assert await job_store.list_fragments(job.id) == []


# ─── Claims and fragments ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_released(job_store, make_job):
    job = await make_job()

    claim = await job_store.claim_chunk(job.id, 0, lease_seconds=60)
    assert claim is not None
    assert await job_store.claim_chunk(job.id, 0, lease_seconds=60) is None

    await job_store.release_claim(job.id, 0, claim)
    assert await job_store.claim_chunk(job.id, 0, lease_seconds=60) is not None


@pytest.mark.asyncio
async def test_stale_claim_can_be_taken_over(job_store, make_job):
    job = await make_job()
    first = await job_store.claim_chunk(job.id, 0, lease_seconds=60)
    second = await job_store.claim_chunk(job.id, 0, lease_seconds=0)
    assert first is not None
    assert second is not None
    assert second != first


@pytest.mark.asyncio
async def test_stale_worker_cannot_release_a_taken_over_claim(job_store, make_job):
    job = await make_job()
    stale = await job_store.claim_chunk(job.id, 0, lease_seconds=60)
    current = await job_store.claim_chunk(job.id, 0, lease_seconds=0)

    await job_store.release_claim(job.id, 0, stale)

    held = await job_store.get_job(job.id, ORG)
    assert held.claimed_chunk == 0
    assert held.claimed_at.isoformat(timespec="microseconds") == current
    assert await job_store.claim_chunk(job.id, 0, lease_seconds=60) is None


@pytest.mark.asyncio
async def test_only_the_next_ordinal_can_be_claimed(job_store, make_job):
    job = await make_job()
    assert await job_store.claim_chunk(job.id, 1, lease_seconds=60) is None


@pytest.mark.asyncio
async def test_record_fragment_advances_once(job_store, make_job):
    job = await make_job(["zero", "one"])
    await job_store.claim_chunk(job.id, 0, lease_seconds=60)
    await job_store.set_parse_error(job.id, "Chunk 0: timeout")

    fragment = ExtractionFragment(chunk_ordinal=0, packages=[{"name": "Silver Plan"}])
    updated = await job_store.record_fragment(job.id, fragment)

    assert updated is not None
    assert updated.parsed_chunks == 1
    assert updated.claimed_chunk is None
    assert updated.parse_error is None

    # A second record of the same ordinal is refused and stores nothing.
    assert await job_store.record_fragment(job.id, fragment) is None
    assert await job_store.list_fragments(job.id) == [fragment]


@pytest.mark.asyncio
async def test_record_fragment_never_exceeds_total(job_store, make_job):
    job = await make_job(["only"])
    assert await job_store.record_fragment(job.id, ExtractionFragment(chunk_ordinal=0)) is not None
    assert await job_store.record_fragment(job.id, ExtractionFragment(chunk_ordinal=1)) is None

    fetched = await job_store.get_job(job.id, ORG)
    assert fetched.parsed_chunks == fetched.total_chunks == 1


# ─── Transitions and logs ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_transition_is_compare_and_set(job_store, make_job):
    job = await make_job()

    moved = await job_store.transition(job.id, {JobStatus.UPLOADED}, JobStatus.PARSING)
    assert moved is not None
    assert moved.status == JobStatus.PARSING

    stale = await job_store.transition(job.id, {JobStatus.UPLOADED}, JobStatus.PARSING)
    assert stale is None


@pytest.mark.asyncio
async def test_transition_writes_fields(job_store, make_job):
    job = await make_job()
    data = {"packages": [{"name": "Silver Plan"}]}

    updated = await job_store.transition(
        job.id,
        {JobStatus.UPLOADED},
        JobStatus.PARSED,
        {"canonical_data": data, "generation_summary": {"packages": 1}},
    )

    assert updated.canonical_data == data
    assert updated.generation_summary == {"packages": 1}


@pytest.mark.asyncio
async def test_transition_rejects_unknown_fields(job_store, make_job):
    job = await make_job()
    with pytest.raises(ValueError, match="Unsupported transition fields"):
        await job_store.transition(
            job.id, {JobStatus.UPLOADED}, JobStatus.PARSING, {"parsed_chunks": 5}
        )


@pytest.mark.asyncio
async def test_transition_with_no_expected_status_is_a_no_op(job_store, make_job):
    job = await make_job()
    assert await job_store.transition(job.id, set(), JobStatus.PARSING) is None


@pytest.mark.asyncio
async def test_append_generation_log(job_store, make_job):
    job = await make_job()
    first = GenerationLogEntry(step="clean", status=StepStatus.DONE, detail="Removed 0 rows")
    second = GenerationLogEntry(step="packages", status=StepStatus.FAILED, detail="boom")

    await job_store.append_generation_log(job.id, first)
    log = await job_store.append_generation_log(job.id, second)

    assert [e.step for e in log] == ["clean", "packages"]
    fetched = await job_store.get_job(job.id, ORG)
    assert fetched.generation_log == log


@pytest.mark.asyncio
async def test_append_log_for_missing_job(job_store):
    entry = GenerationLogEntry(step="clean", status=StepStatus.DONE)
    assert await job_store.append_generation_log("missing", entry) == []
