"""Abstract base class for the extraction engine.

The extraction engine is an opaque capability: one chunk of text in, one
candidate :class:`ExtractionFragment` out.  It may be slow, may fail and may
time out; the chunk processor bounds every call and treats any failure as a
retryable chunk-level error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from trainkb.models.fragment import ExtractionFragment


# Concrete implementation: LLMExtractionEngine (trainkb/services/extraction_engine.py)
class IExtractionEngine(ABC):
    """Contract for turning a text chunk into a candidate fragment."""

    @abstractmethod
    async def extract(
        self,
        chunk_text: str,
        chunk_ordinal: int,
        total_chunks: int,
    ) -> ExtractionFragment:
        """Extract candidate training data from one chunk.

        Parameters
        ----------
        chunk_text:
            The chunk's text.
        chunk_ordinal:
            0-based position of the chunk; copied onto the fragment.
        total_chunks:
            Number of chunks in the job, for prompt context.

        Raises
        ------
        Exception
            Any failure.  Callers wrap it into ``ExtractionTransientError``.
        """

    @abstractmethod
    def get_engine_name(self) -> str:
        """Return a human-readable identifier for logging."""
