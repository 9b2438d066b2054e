"""Public interface definitions for collaborators and stores.

The pipeline reaches every external service and every table store through
the abstract base classes in this package.  Concrete adapters are built in
``trainkb/main.py`` and injected; unit tests inject mocks or temp-file
SQLite stores instead.

CONCRETE IMPLEMENTATION MAP:
    Interface            →  Concrete implementations
    ─────────────────────────────────────────────────────────────────────
    ILLMProvider         →  AnthropicLLMProvider, OpenAILLMProvider
                            (trainkb/providers/llm/)
    IExtractionEngine    →  LLMExtractionEngine
                            (trainkb/services/extraction_engine.py)
    IJobStore            →  SQLiteJobStore (trainkb/providers/store/)
    ICorpusStore         →  SQLiteCorpusStore (trainkb/providers/store/)
"""

from trainkb.interfaces.corpus_store import CORPUS_TABLES, ICorpusStore
from trainkb.interfaces.extraction_engine import IExtractionEngine
from trainkb.interfaces.job_store import TRANSITION_FIELDS, IJobStore
from trainkb.interfaces.llm_provider import ILLMProvider

__all__ = [
    "CORPUS_TABLES",
    "ICorpusStore",
    "IExtractionEngine",
    "IJobStore",
    "ILLMProvider",
    "TRANSITION_FIELDS",
]
