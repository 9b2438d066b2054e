"""Shared pytest fixtures for the trainkb test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from trainkb.interfaces.extraction_engine import IExtractionEngine
from trainkb.models.fragment import ExtractionFragment
from trainkb.models.ingestion import IngestionJob, JobStatus, UploadedFile
from trainkb.providers.store.sqlite_corpus_store import SQLiteCorpusStore
from trainkb.providers.store.sqlite_job_store import SQLiteJobStore

ORG = "org-acme"
OTHER_ORG = "org-globex"


# ---------------------------------------------------------------------------
# Fake extraction engine
# ---------------------------------------------------------------------------


class ScriptedEngine(IExtractionEngine):
    """Extraction engine that returns pre-scripted fragments per ordinal.

    ``failures`` maps an ordinal to how many calls for it raise before it
    succeeds.  Ordinals without a script yield an empty fragment.
    """

    def __init__(
        self,
        fragments: dict[int, dict[str, Any]] | None = None,
        failures: dict[int, int] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fragments = dict(fragments or {})
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls: list[int] = []

    async def extract(
        self,
        chunk_text: str,
        chunk_ordinal: int,
        total_chunks: int,
    ) -> ExtractionFragment:
        self.calls.append(chunk_ordinal)
        if self.delay:
            await asyncio.sleep(self.delay)
        remaining = self.failures.get(chunk_ordinal, 0)
        if remaining:
            self.failures[chunk_ordinal] = remaining - 1
            raise RuntimeError("model unavailable")
        return ExtractionFragment(chunk_ordinal=chunk_ordinal, **self.fragments.get(chunk_ordinal, {}))

    def get_engine_name(self) -> str:
        return "scripted"


def silver_plan_script() -> dict[int, dict[str, Any]]:
    """Four chunks: "Silver Plan" in the first three, one guideline in the last."""
    return {
        0: {"packages": [{"name": "Silver Plan", "selling_points": ["Quarterly visits"]}]},
        1: {"packages": [{"name": "silver plan", "selling_points": ["Free re-treatments"]}]},
        2: {
            "packages": [
                {"name": " SILVER  PLAN ", "selling_points": ["Quarterly visits", "No contract"]}
            ]
        },
        3: {
            "guidelines": [
                {
                    "guideline_type": "pricing_rule",
                    "title": "Never discount below cost",
                    "content": "Discounts may not exceed 15%.",
                }
            ]
        },
    }


# ---------------------------------------------------------------------------
# Canonical data
# ---------------------------------------------------------------------------


def sample_canonical() -> dict[str, Any]:
    """Return a small, well-formed canonical corpus as plain JSON data."""
    return {
        "packages": [
            {
                "name": "Silver Plan",
                "description": "Quarterly general pest service",
                "initial_price": 149.0,
                "recurring_price": 49.0,
                "service_frequency": "quarterly",
                "included_services": ["Exterior spray"],
                "included_pests": ["Ants", "Spiders"],
                "selling_points": ["Quarterly visits", "Free re-treatments"],
                "objections": [
                    {
                        "text": "It's too expensive",
                        "category": "price",
                        "recommended_response": "Compare it to one emergency visit.",
                    }
                ],
            },
            {"name": "Gold Plan", "selling_points": ["Monthly visits"]},
        ],
        "guidelines": [
            {
                "guideline_type": "pricing_rule",
                "title": "Never discount below cost",
                "content": "Discounts may not exceed 15%.",
            }
        ],
        "training_topics": [],
        "courses": [
            {
                "name": "Sales Fundamentals",
                "category": "sales",
                "modules": [
                    {
                        "name": "Handling price objections",
                        "unlock_order": 1,
                        "scenario_templates": [
                            {"name": "Budget homeowner", "situation": "Caller says it costs too much."},
                            {"name": "Competitor quote", "situation": "Caller has a cheaper quote."},
                        ],
                    },
                    {"name": "Upselling", "unlock_order": 2},
                ],
            }
        ],
        "conflicts": [],
    }


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Return a database path inside the test's temporary directory."""
    return str(tmp_path / "trainkb-test.db")


@pytest.fixture
async def job_store(db_path: str) -> SQLiteJobStore:
    store = SQLiteJobStore(db_path=db_path)
    await store.initialize()
    return store


@pytest.fixture
async def corpus_store(db_path: str) -> SQLiteCorpusStore:
    store = SQLiteCorpusStore(db_path=db_path)
    await store.initialize()
    return store


@pytest.fixture
def make_job(job_store: SQLiteJobStore) -> Callable[..., Awaitable[IngestionJob]]:
    """Factory creating a job with the given chunks, optionally already parsed."""

    async def _make(
        chunks: list[str] | None = None,
        organization_id: str = ORG,
        canonical: dict[str, Any] | None = None,
        status: JobStatus | None = None,
    ) -> IngestionJob:
        chunks = chunks if chunks is not None else ["chunk zero", "chunk one"]
        files = [UploadedFile(name="handbook.txt", content_type="text/plain", size=100)]
        job = await job_store.create_job(organization_id, files, chunks)
        if canonical is None and status is None:
            return job
        updated = await job_store.transition(
            job.id,
            {JobStatus.UPLOADED},
            status or JobStatus.PARSED,
            {"canonical_data": canonical} if canonical is not None else None,
        )
        assert updated is not None
        return updated

    return _make
