"""trainkb domain models; re-exports all public model classes.

- **ingestion** -- job status, job record, chunks, generation log, results.
- **fragment** -- loosely typed per-chunk extraction output.
- **canonical** -- the deduplicated corpus that is reviewed and persisted.
"""

from trainkb.models.canonical import (
    CanonicalCorpus,
    CanonicalCourse,
    CanonicalGuideline,
    CanonicalModule,
    CanonicalObjection,
    CanonicalPackage,
    CanonicalScenarioTemplate,
    TrainingTopic,
    UnresolvedConflict,
)
from trainkb.models.fragment import ExtractionFragment
from trainkb.models.ingestion import (
    Chunk,
    GenerationLogEntry,
    GenerationResult,
    IncomingFile,
    IngestionJob,
    JobStatus,
    ParseResult,
    StepStatus,
    UploadedFile,
)

__all__ = [
    "CanonicalCorpus",
    "CanonicalCourse",
    "CanonicalGuideline",
    "CanonicalModule",
    "CanonicalObjection",
    "CanonicalPackage",
    "CanonicalScenarioTemplate",
    "Chunk",
    "ExtractionFragment",
    "GenerationLogEntry",
    "GenerationResult",
    "IncomingFile",
    "IngestionJob",
    "JobStatus",
    "ParseResult",
    "StepStatus",
    "TrainingTopic",
    "UnresolvedConflict",
    "UploadedFile",
]
