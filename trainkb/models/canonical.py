"""Canonical training-corpus models.

The canonical structure is what the Synthesizer produces from all fragments,
what the reviewer edits, and what the Generator persists.  It is
organization-scoped staging data: nothing here has a database id until
generation assigns one.

Natural keys (enforced by the Synthesizer when merging and by the corpus
store's unique constraints when persisting):

    CanonicalPackage            name, per organization
    CanonicalObjection          text, per package
    CanonicalGuideline          (type, title) when merging; title when stored
    CanonicalCourse             name, per organization
    CanonicalModule             name, per course
    CanonicalScenarioTemplate   name, per module
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

GUIDELINE_TYPES = ("pricing_rule", "qualification", "process", "communication", "referral")
DEFAULT_GUIDELINE_TYPE = "process"
DEFAULT_COURSE_CATEGORY = "custom"
DEFAULT_DIFFICULTY = "medium"
DEFAULT_SCENARIO_COUNT = 10
DEFAULT_PASS_THRESHOLD = 70
DEFAULT_REQUIRED_COMPLETIONS = 1


class CanonicalObjection(BaseModel):
    """A customer objection and how to handle it."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    category: str | None = None
    recommended_response: str | None = None
    key_points: list[str] = Field(default_factory=list)
    alternatives: list[str] = Field(default_factory=list)
    things_to_avoid: list[str] = Field(default_factory=list)


class CanonicalPackage(BaseModel):
    """A service package the organization sells."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str | None = None
    initial_price: float | None = None
    recurring_price: float | None = None
    service_frequency: str | None = None
    included_services: list[str] = Field(default_factory=list)
    included_pests: list[str] = Field(default_factory=list)
    # Order matters: selling points are displayed in this order.
    selling_points: list[str] = Field(default_factory=list)
    objections: list[CanonicalObjection] = Field(default_factory=list)


class CanonicalGuideline(BaseModel):
    """A sales guideline (pricing rule, qualification step, process, ...)."""

    model_config = ConfigDict(frozen=True)

    guideline_type: str = DEFAULT_GUIDELINE_TYPE
    title: str = Field(min_length=1)
    content: str = ""
    examples: list[str] = Field(default_factory=list)


class TrainingTopic(BaseModel):
    """A distinct skill area the extraction engine says should be trained."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    description: str | None = None
    # Name of the course the topic was filed under during synthesis.
    course: str | None = None


class CanonicalScenarioTemplate(BaseModel):
    """A role-play scenario template within a module."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    situation: str = ""
    customer_goals: str | None = None
    objectives: list[str] = Field(default_factory=list)
    # Scoring area -> relative weight.
    scoring_weights: dict[str, float] = Field(default_factory=dict)
    escalation_triggers: list[str] = Field(default_factory=list)
    de_escalation_triggers: list[str] = Field(default_factory=list)
    resolution_conditions: list[str] = Field(default_factory=list)
    difficulty: str = DEFAULT_DIFFICULTY


class CanonicalModule(BaseModel):
    """A module within a course, unlocked in ``unlock_order``."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str | None = None
    difficulty: str = DEFAULT_DIFFICULTY
    scenario_count: int = Field(default=DEFAULT_SCENARIO_COUNT, ge=0)
    unlock_order: int = Field(default=1, ge=1)
    pass_threshold: int = Field(default=DEFAULT_PASS_THRESHOLD, ge=0, le=100)
    required_completions: int = Field(default=DEFAULT_REQUIRED_COMPLETIONS, ge=0)
    scenario_templates: list[CanonicalScenarioTemplate] = Field(default_factory=list)


class CanonicalCourse(BaseModel):
    """A training course grouping modules."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str | None = None
    category: str = DEFAULT_COURSE_CATEGORY
    icon: str | None = None
    modules: list[CanonicalModule] = Field(default_factory=list)


class UnresolvedConflict(BaseModel):
    """A scalar value that disagreed with the one already kept.

    Surfaced to the reviewer instead of silently overwriting.
    """

    model_config = ConfigDict(frozen=True)

    entity: str
    key: str
    field: str
    kept: Any = None
    rejected: Any = None
    chunk_ordinal: int | None = None


class CanonicalCorpus(BaseModel):
    """The complete canonical structure for one ingestion job."""

    model_config = ConfigDict(frozen=True)

    packages: list[CanonicalPackage] = Field(default_factory=list)
    guidelines: list[CanonicalGuideline] = Field(default_factory=list)
    training_topics: list[TrainingTopic] = Field(default_factory=list)
    courses: list[CanonicalCourse] = Field(default_factory=list)
    conflicts: list[UnresolvedConflict] = Field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Return entity counts for logging and summaries."""
        modules = [m for c in self.courses for m in c.modules]
        return {
            "packages": len(self.packages),
            "guidelines": len(self.guidelines),
            "courses": len(self.courses),
            "modules": len(modules),
            "scenario_templates": sum(len(m.scenario_templates) for m in modules),
            "conflicts": len(self.conflicts),
        }
