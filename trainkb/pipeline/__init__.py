"""Ingestion pipeline: chunk processing, review and generation."""

from trainkb.pipeline.chunk_processor import ChunkProcessor
from trainkb.pipeline.generator import CLEAN_ORDER, Generator
from trainkb.pipeline.review_store import ReviewStore
from trainkb.pipeline.state_machine import ALLOWED_TRANSITIONS, can_transition, ensure_transition

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CLEAN_ORDER",
    "ChunkProcessor",
    "Generator",
    "ReviewStore",
    "can_transition",
    "ensure_transition",
]
