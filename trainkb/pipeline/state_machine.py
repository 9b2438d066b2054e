"""Ingestion job state machine.

    uploaded ──→ parsing ──→ parsed ──→ reviewing ──→ generating ──→ complete
                  ↺   │                  ↺    ↑          │
                      ↓                       │          ↓
                    failed ───────────────────┴───── failed

``parsing`` self-loops once per processed chunk and ``reviewing`` once per
save.  ``parsed → generating`` skips the optional review.  ``failed`` may
retry into ``parsing`` (synthesis failure) or ``generating`` (generation
failure).  ``complete`` is terminal.

The table below is the only place transitions are defined; callers check
with :func:`ensure_transition` before any side effect and then persist with
the job store's compare-and-set ``transition``.
"""

from __future__ import annotations

from trainkb.models.ingestion import JobStatus
from trainkb.utils.errors import InvalidStateError

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.UPLOADED: frozenset({JobStatus.PARSING}),
    JobStatus.PARSING: frozenset({JobStatus.PARSING, JobStatus.PARSED, JobStatus.FAILED}),
    JobStatus.PARSED: frozenset({JobStatus.REVIEWING, JobStatus.GENERATING}),
    JobStatus.REVIEWING: frozenset({JobStatus.REVIEWING, JobStatus.GENERATING}),
    JobStatus.GENERATING: frozenset({JobStatus.COMPLETE, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset({JobStatus.PARSING, JobStatus.GENERATING}),
    JobStatus.COMPLETE: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return ``True`` if *current* → *target* is an allowed transition."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(target: JobStatus) -> frozenset[JobStatus]:
    """Return every status from which *target* may be entered."""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


def ensure_transition(current: JobStatus, target: JobStatus, job_id: str | None = None) -> None:
    """Raise :class:`InvalidStateError` unless *current* → *target* is allowed."""
    if not can_transition(current, target):
        raise InvalidStateError(
            message=f"Cannot move job from '{current.value}' to '{target.value}'",
            context={"job_id": job_id, "status": current.value, "target": target.value},
        )
