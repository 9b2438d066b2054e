"""Unit tests for the IngestionService facade."""

from __future__ import annotations

import pytest
from conftest import ORG, OTHER_ORG, ScriptedEngine, sample_canonical

from trainkb.config.loader import IngestionConfig
from trainkb.models.ingestion import IncomingFile, JobStatus
from trainkb.pipeline.chunk_processor import ChunkProcessor
from trainkb.pipeline.generator import Generator
from trainkb.pipeline.review_store import ReviewStore
from trainkb.services.document_extractor import DocumentExtractor
from trainkb.services.ingestion_service import IngestionService
from trainkb.utils.concurrency import KeyedLocks
from trainkb.utils.errors import InvalidStateError, JobNotFoundError, UploadValidationError


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def service(job_store, corpus_store, locks) -> IngestionService:
    config = IngestionConfig(chunk_max_chars=100, history_limit=2)
    return IngestionService(
        job_store=job_store,
        document_extractor=DocumentExtractor(config),
        chunk_processor=ChunkProcessor(job_store, ScriptedEngine(), job_locks=locks),
        review_store=ReviewStore(job_store, job_locks=locks),
        generator=Generator(job_store, corpus_store, job_locks=locks),
        job_locks=locks,
        config=config,
    )


def _file(text: str = "Silver Plan. " * 20) -> IncomingFile:
    return IncomingFile(name="handbook.txt", content_type="text/plain", data=text.encode())


@pytest.mark.asyncio
async def test_upload_creates_chunked_job(service):
    job = await service.upload(ORG, [_file()])

    assert job.status == JobStatus.UPLOADED
    assert job.organization_id == ORG
    assert job.total_chunks == 3
    assert job.files[0].name == "handbook.txt"


@pytest.mark.asyncio
async def test_rejected_upload_creates_no_job(service):
    bad = IncomingFile(name="virus.exe", content_type="application/x-msdownload", data=b"MZ")
    with pytest.raises(UploadValidationError):
        await service.upload(ORG, [bad])
    assert await service.history(ORG) == []


@pytest.mark.asyncio
async def test_history_uses_configured_limit(service):
    for _ in range(3):
        await service.upload(ORG, [_file()])
    await service.upload(OTHER_ORG, [_file()])

    assert len(await service.history(ORG)) == 2
    assert len(await service.history(ORG, limit=10)) == 3


@pytest.mark.asyncio
async def test_status_of_foreign_job_not_found(service):
    job = await service.upload(OTHER_ORG, [_file()])
    with pytest.raises(JobNotFoundError):
        await service.status(job.id, ORG)


@pytest.mark.asyncio
async def test_delete_abandons_job(service):
    job = await service.upload(ORG, [_file()])
    await service.delete(job.id, ORG)

    with pytest.raises(JobNotFoundError):
        await service.status(job.id, ORG)
    with pytest.raises(JobNotFoundError):
        await service.delete(job.id, ORG)


@pytest.mark.asyncio
async def test_delete_refused_while_generation_runs(service, locks, make_job):
    job = await make_job(canonical=sample_canonical(), status=JobStatus.GENERATING)

    async with locks.hold(job.id):
        with pytest.raises(InvalidStateError):
            await service.delete(job.id, ORG)
    assert (await service.status(job.id, ORG)).status == JobStatus.GENERATING


@pytest.mark.asyncio
async def test_delete_abandons_interrupted_generation(service, make_job):
    job = await make_job(canonical=sample_canonical(), status=JobStatus.GENERATING)

    await service.delete(job.id, ORG)

    with pytest.raises(JobNotFoundError):
        await service.status(job.id, ORG)


@pytest.mark.asyncio
async def test_full_flow(service):
    job = await service.upload(ORG, [_file()])
    while not (await service.parse_next(job.id, ORG)).done:
        pass

    data = await service.get_data(job.id, ORG)
    data["packages"] = [{"name": "Reviewed Plan", "selling_points": ["Guaranteed"]}]
    saved = await service.save_data(job.id, ORG, data)
    assert saved.status == JobStatus.REVIEWING

    result = await service.generate(job.id, ORG)
    assert result.summary["packages"] == 1
    assert result.summary["selling_points"] == 1
    assert (await service.status(job.id, ORG)).status == JobStatus.COMPLETE
