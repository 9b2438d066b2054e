"""Unit tests for the ingestion job state machine."""

from __future__ import annotations

import pytest

from trainkb.models.ingestion import JobStatus
from trainkb.pipeline.state_machine import (
    ALLOWED_TRANSITIONS,
    can_transition,
    ensure_transition,
    sources_for,
)
from trainkb.utils.errors import InvalidStateError


class TestTransitions:
    def test_every_status_has_an_entry(self) -> None:
        assert set(ALLOWED_TRANSITIONS) == set(JobStatus)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.UPLOADED, JobStatus.PARSING),
            (JobStatus.PARSING, JobStatus.PARSING),
            (JobStatus.PARSING, JobStatus.PARSED),
            (JobStatus.PARSED, JobStatus.REVIEWING),
            (JobStatus.PARSED, JobStatus.GENERATING),
            (JobStatus.REVIEWING, JobStatus.REVIEWING),
            (JobStatus.REVIEWING, JobStatus.GENERATING),
            (JobStatus.GENERATING, JobStatus.COMPLETE),
            (JobStatus.GENERATING, JobStatus.FAILED),
            (JobStatus.FAILED, JobStatus.GENERATING),
        ],
    )
    def test_forward_path_allowed(self, current: JobStatus, target: JobStatus) -> None:
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.UPLOADED, JobStatus.PARSED),
            (JobStatus.UPLOADED, JobStatus.GENERATING),
            (JobStatus.PARSING, JobStatus.GENERATING),
            (JobStatus.REVIEWING, JobStatus.PARSED),
            (JobStatus.GENERATING, JobStatus.REVIEWING),
            (JobStatus.FAILED, JobStatus.REVIEWING),
        ],
    )
    def test_skips_and_reversals_rejected(self, current: JobStatus, target: JobStatus) -> None:
        assert not can_transition(current, target)

    def test_complete_is_terminal(self) -> None:
        assert all(not can_transition(JobStatus.COMPLETE, target) for target in JobStatus)

    def test_generating_sources(self) -> None:
        assert sources_for(JobStatus.GENERATING) == {
            JobStatus.PARSED,
            JobStatus.REVIEWING,
            JobStatus.FAILED,
        }


class TestEnsureTransition:
    def test_allowed_returns_none(self) -> None:
        assert ensure_transition(JobStatus.PARSED, JobStatus.REVIEWING) is None

    def test_disallowed_raises_with_context(self) -> None:
        with pytest.raises(InvalidStateError) as exc_info:
            ensure_transition(JobStatus.COMPLETE, JobStatus.GENERATING, job_id="job-1")

        context = exc_info.value.context
        assert context == {"job_id": "job-1", "status": "complete", "target": "generating"}
        assert "complete" in exc_info.value.message
