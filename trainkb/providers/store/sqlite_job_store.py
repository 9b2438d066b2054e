"""SQLite-backed ingestion job store.

Persists jobs, their immutable chunks and the fragments recorded for parsed
chunks.  Uses ``aiosqlite`` for async I/O.

The guarantees the chunk processor relies on are expressed as single
conditional UPDATE statements:

    claim      ... WHERE parsed_chunks = :ordinal
                     AND (claimed_chunk IS NULL OR claimed_at < :stale_cutoff)
    record     ... SET parsed_chunks = parsed_chunks + 1
                   WHERE parsed_chunks = :ordinal      (+ fragment INSERT, one txn)
    release    ... WHERE claimed_chunk = :ordinal AND claimed_at = :claim
    transition ... WHERE status IN (:expected...)

so correctness holds across processes, not just across coroutines.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Collection, Mapping
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from trainkb.interfaces.job_store import TRANSITION_FIELDS, IJobStore
from trainkb.models.fragment import ExtractionFragment
from trainkb.models.ingestion import (
    Chunk,
    GenerationLogEntry,
    IngestionJob,
    JobStatus,
    UploadedFile,
)
from trainkb.providers.store.sqlite_base import SQLiteStoreBase, utc_now_iso
from trainkb.utils.errors import JobNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/trainkb.db")

_SCHEMA_SQL = [
    """\
CREATE TABLE IF NOT EXISTS ingestion_jobs (
    id                      TEXT    PRIMARY KEY,
    organization_id         TEXT    NOT NULL,
    status                  TEXT    NOT NULL,
    files_json              TEXT    NOT NULL DEFAULT '[]',
    total_chunks            INTEGER NOT NULL CHECK (total_chunks >= 0),
    parsed_chunks           INTEGER NOT NULL DEFAULT 0
                                    CHECK (parsed_chunks >= 0 AND parsed_chunks <= total_chunks),
    claimed_chunk           INTEGER,
    claimed_at              TEXT,
    canonical_json          TEXT,
    parse_error             TEXT,
    generation_log_json     TEXT    NOT NULL DEFAULT '[]',
    generation_summary_json TEXT,
    created_at              TEXT    NOT NULL,
    updated_at              TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS job_chunks (
    job_id   TEXT    NOT NULL REFERENCES ingestion_jobs(id) ON DELETE CASCADE,
    ordinal  INTEGER NOT NULL,
    text     TEXT    NOT NULL,
    PRIMARY KEY (job_id, ordinal)
);
""",
    """\
CREATE TABLE IF NOT EXISTS job_fragments (
    job_id        TEXT    NOT NULL REFERENCES ingestion_jobs(id) ON DELETE CASCADE,
    ordinal       INTEGER NOT NULL,
    fragment_json TEXT    NOT NULL,
    created_at    TEXT    NOT NULL,
    PRIMARY KEY (job_id, ordinal)
);
""",
    "CREATE INDEX IF NOT EXISTS idx_jobs_org_created ON ingestion_jobs(organization_id, created_at);",
]

_JOB_COLUMNS = (
    "id, organization_id, status, files_json, total_chunks, parsed_chunks, "
    "claimed_chunk, claimed_at, canonical_json, parse_error, generation_log_json, "
    "generation_summary_json, created_at, updated_at"
)

_INSERT_JOB_SQL = f"""\
INSERT INTO ingestion_jobs ({_JOB_COLUMNS})
VALUES (?, ?, ?, ?, ?, 0, NULL, NULL, NULL, NULL, '[]', NULL, ?, ?);
"""

_CLAIM_SQL = """\
UPDATE ingestion_jobs
SET claimed_chunk = ?, claimed_at = ?, updated_at = ?
WHERE id = ?
  AND parsed_chunks = ?
  AND parsed_chunks < total_chunks
  AND (claimed_chunk IS NULL OR claimed_at < ?);
"""

_RELEASE_SQL = """\
UPDATE ingestion_jobs
SET claimed_chunk = NULL, claimed_at = NULL, updated_at = ?
WHERE id = ? AND claimed_chunk = ? AND claimed_at = ?;
"""

_ADVANCE_SQL = """\
UPDATE ingestion_jobs
SET parsed_chunks = parsed_chunks + 1,
    claimed_chunk = NULL,
    claimed_at    = NULL,
    parse_error   = NULL,
    updated_at    = ?
WHERE id = ? AND parsed_chunks = ? AND parsed_chunks < total_chunks;
"""

# transition() field -> (column, serializer)
_FIELD_COLUMNS: dict[str, str] = {
    "canonical_data": "canonical_json",
    "parse_error": "parse_error",
    "generation_log": "generation_log_json",
    "generation_summary": "generation_summary_json",
}


def _dump_log(entries: list[GenerationLogEntry]) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in entries])


def _serialize_field(field: str, value: Any) -> Any:
    if field == "parse_error" or value is None:
        return value
    if field == "generation_log":
        return _dump_log(value)
    return json.dumps(value)


def _row_to_job(row: aiosqlite.Row) -> IngestionJob:
    r = dict(row)
    summary = r["generation_summary_json"]
    canonical = r["canonical_json"]
    return IngestionJob(
        id=r["id"],
        organization_id=r["organization_id"],
        status=JobStatus(r["status"]),
        files=[UploadedFile.model_validate(f) for f in json.loads(r["files_json"] or "[]")],
        total_chunks=r["total_chunks"],
        parsed_chunks=r["parsed_chunks"],
        claimed_chunk=r["claimed_chunk"],
        claimed_at=r["claimed_at"],
        canonical_data=json.loads(canonical) if canonical is not None else None,
        parse_error=r["parse_error"],
        generation_log=[
            GenerationLogEntry.model_validate(e)
            for e in json.loads(r["generation_log_json"] or "[]")
        ],
        generation_summary=json.loads(summary) if summary is not None else None,
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


class SQLiteJobStore(SQLiteStoreBase, IJobStore):
    """SQLite-backed job, chunk and fragment persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        super().__init__(db_path)

    async def initialize(self) -> None:
        """Create the job tables and indices if they don't exist."""
        await self._create_schema(_SCHEMA_SQL)
        logger.info("job_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        organization_id: str,
        files: list[UploadedFile],
        chunks: list[str],
    ) -> IngestionJob:
        job_id = str(uuid.uuid4())
        now = utc_now_iso()
        files_json = json.dumps([f.model_dump(mode="json") for f in files])

        async with self._connect() as db:
            await db.execute(
                _INSERT_JOB_SQL,
                (job_id, organization_id, JobStatus.UPLOADED.value, files_json, len(chunks), now, now),
            )
            await db.executemany(
                "INSERT INTO job_chunks (job_id, ordinal, text) VALUES (?, ?, ?)",
                [(job_id, ordinal, text) for ordinal, text in enumerate(chunks)],
            )
            await db.commit()

        logger.info(
            "job_created",
            job_id=job_id,
            organization_id=organization_id,
            files=len(files),
            total_chunks=len(chunks),
        )
        job = await self._fetch_job(job_id)
        if job is None:
            # Deleted between the insert and the read-back.
            raise JobNotFoundError(job_id)
        return job

    async def get_job(self, job_id: str, organization_id: str) -> IngestionJob | None:
        job = await self._fetch_job(job_id)
        if job is None or job.organization_id != organization_id:
            return None
        return job

    async def list_jobs(self, organization_id: str, limit: int = 20) -> list[IngestionJob]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs "
                "WHERE organization_id = ? ORDER BY created_at DESC LIMIT ?",
                (organization_id, limit),
            )
            rows = await cursor.fetchall()
        return [_row_to_job(row) for row in rows]

    async def delete_job(self, job_id: str, organization_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM ingestion_jobs WHERE id = ? AND organization_id = ?",
                (job_id, organization_id),
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("job_deleted", job_id=job_id, organization_id=organization_id)
        return deleted

    # ------------------------------------------------------------------
    # Chunks and fragments
    # ------------------------------------------------------------------

    async def get_chunk(self, job_id: str, ordinal: int) -> Chunk | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT job_id, ordinal, text FROM job_chunks WHERE job_id = ? AND ordinal = ?",
                (job_id, ordinal),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return Chunk(job_id=row["job_id"], ordinal=row["ordinal"], text=row["text"])

    async def claim_chunk(
        self, job_id: str, ordinal: int, lease_seconds: float
    ) -> str | None:
        now = datetime.now(tz=timezone.utc)  # noqa: UP017
        stale_cutoff = (now - timedelta(seconds=lease_seconds)).isoformat(timespec="microseconds")
        now_iso = now.isoformat(timespec="microseconds")
        async with self._connect() as db:
            cursor = await db.execute(
                _CLAIM_SQL,
                (ordinal, now_iso, now_iso, job_id, ordinal, stale_cutoff),
            )
            await db.commit()
            claimed = cursor.rowcount == 1
        logger.debug("chunk_claim", job_id=job_id, ordinal=ordinal, claimed=claimed)
        return now_iso if claimed else None

    async def release_claim(self, job_id: str, ordinal: int, claim: str) -> None:
        async with self._connect() as db:
            cursor = await db.execute(_RELEASE_SQL, (utc_now_iso(), job_id, ordinal, claim))
            await db.commit()
            released = cursor.rowcount == 1
        if not released:
            logger.warning("chunk_claim_lost", job_id=job_id, ordinal=ordinal)

    async def record_fragment(
        self,
        job_id: str,
        fragment: ExtractionFragment,
    ) -> IngestionJob | None:
        now = utc_now_iso()
        async with self._connect() as db:
            cursor = await db.execute(_ADVANCE_SQL, (now, job_id, fragment.chunk_ordinal))
            if cursor.rowcount != 1:
                await db.rollback()
                logger.warning(
                    "fragment_already_recorded",
                    job_id=job_id,
                    ordinal=fragment.chunk_ordinal,
                )
                return None
            await db.execute(
                "INSERT INTO job_fragments (job_id, ordinal, fragment_json, created_at) "
                "VALUES (?, ?, ?, ?)",
                (job_id, fragment.chunk_ordinal, fragment.model_dump_json(), now),
            )
            await db.commit()
        return await self._fetch_job(job_id)

    async def list_fragments(self, job_id: str) -> list[ExtractionFragment]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT fragment_json FROM job_fragments WHERE job_id = ? ORDER BY ordinal",
                (job_id,),
            )
            rows = await cursor.fetchall()
        return [ExtractionFragment.model_validate_json(row["fragment_json"]) for row in rows]

    # ------------------------------------------------------------------
    # Status and logs
    # ------------------------------------------------------------------

    async def transition(
        self,
        job_id: str,
        expected: Collection[JobStatus],
        target: JobStatus,
        updates: Mapping[str, Any] | None = None,
    ) -> IngestionJob | None:
        updates = dict(updates or {})
        unknown = set(updates) - TRANSITION_FIELDS
        if unknown:
            msg = f"Unsupported transition fields: {sorted(unknown)}"
            raise ValueError(msg)
        if not expected:
            return None

        assignments = ["status = ?", "updated_at = ?"]
        params: list[Any] = [target.value, utc_now_iso()]
        for field, value in updates.items():
            assignments.append(f"{_FIELD_COLUMNS[field]} = ?")
            params.append(_serialize_field(field, value))

        placeholders = ", ".join("?" for _ in expected)
        params.extend([job_id, *(status.value for status in expected)])
        sql = (
            f"UPDATE ingestion_jobs SET {', '.join(assignments)} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            changed = cursor.rowcount == 1

        if not changed:
            return None
        logger.info("job_transitioned", job_id=job_id, status=target.value)
        return await self._fetch_job(job_id)

    async def set_parse_error(self, job_id: str, message: str | None) -> None:
        async with self._connect() as db:
            await db.execute(
                "UPDATE ingestion_jobs SET parse_error = ?, updated_at = ? WHERE id = ?",
                (message, utc_now_iso(), job_id),
            )
            await db.commit()

    async def append_generation_log(
        self,
        job_id: str,
        entry: GenerationLogEntry,
    ) -> list[GenerationLogEntry]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT generation_log_json FROM ingestion_jobs WHERE id = ?",
                (job_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                return []
            log = [
                GenerationLogEntry.model_validate(e)
                for e in json.loads(row["generation_log_json"] or "[]")
            ]
            log.append(entry)
            await db.execute(
                "UPDATE ingestion_jobs SET generation_log_json = ?, updated_at = ? WHERE id = ?",
                (_dump_log(log), utc_now_iso(), job_id),
            )
            await db.commit()
        return log

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return "sqlite_job_store"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _fetch_job(self, job_id: str) -> IngestionJob | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_JOB_COLUMNS} FROM ingestion_jobs WHERE id = ?",
                (job_id,),
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row is not None else None
