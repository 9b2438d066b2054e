"""Extraction fragment: the raw, not-yet-deduplicated result for one chunk.

Fragments are deliberately loosely typed.  The extraction engine returns
whatever JSON the model produced for the four candidate lists; shape
problems are tolerated here and resolved by the Synthesizer's coercion
helpers, so one odd item never fails a chunk.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trainkb.utils.text_normalizer import dict_items


class ExtractionFragment(BaseModel):
    """Candidate packages, guidelines, training topics and courses from one chunk."""

    model_config = ConfigDict(frozen=True)

    chunk_ordinal: int = Field(ge=0)
    packages: list[dict[str, Any]] = Field(default_factory=list)
    guidelines: list[dict[str, Any]] = Field(default_factory=list)
    training_topics: list[dict[str, Any]] = Field(default_factory=list)
    courses: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("packages", "guidelines", "training_topics", "courses", mode="before")
    @classmethod
    def _dict_items_only(cls, value: Any) -> list[dict[str, Any]]:
        # Models occasionally return null or a bare object instead of a list.
        return dict_items(value)

    def counts(self) -> dict[str, int]:
        """Return per-kind counts for progress reporting."""
        return {
            "package_count": len(self.packages),
            "guideline_count": len(self.guidelines),
            "topic_count": len(self.training_topics) + len(self.courses),
        }
