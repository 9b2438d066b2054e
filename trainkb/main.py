"""trainkb FastAPI application entry point.

Wires providers, pipeline components and routes together via dependency
injection.  Loads settings from ``.env`` and ingestion tuning from
``config/config.yaml``, and configures structured logging.

``build_components`` is also used by the CLI to run ingestion without the
web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from trainkb.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from trainkb.api.routes import router as api_router
from trainkb.config.loader import IngestionConfig, ingestion_config, load_config
from trainkb.config.settings import Settings
from trainkb.interfaces.extraction_engine import IExtractionEngine
from trainkb.interfaces.llm_provider import ILLMProvider
from trainkb.pipeline.chunk_processor import ChunkProcessor
from trainkb.pipeline.generator import Generator
from trainkb.pipeline.review_store import ReviewStore
from trainkb.providers.llm.anthropic_provider import AnthropicLLMProvider
from trainkb.providers.llm.openai_provider import OpenAILLMProvider
from trainkb.providers.store.sqlite_corpus_store import SQLiteCorpusStore
from trainkb.providers.store.sqlite_job_store import SQLiteJobStore
from trainkb.services.document_extractor import DocumentExtractor
from trainkb.services.extraction_engine import LLMExtractionEngine
from trainkb.services.ingestion_service import IngestionService
from trainkb.services.synthesizer import Synthesizer
from trainkb.utils.concurrency import KeyedLocks
from trainkb.utils.logging import configure_logging, get_logger

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=config["logging"]["level"],
    json_output=(config["app"]["env"] == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# LLM provider selection
# ---------------------------------------------------------------------------


_LLM_PROVIDERS: dict[str, type[ILLMProvider]] = {
    "anthropic": AnthropicLLMProvider,
    "openai": OpenAILLMProvider,
}


def _build_llm_provider(app_settings: Settings, available: list[str]) -> ILLMProvider:
    """Select the first available LLM provider.

    *available* is ``config["llm"]["available_providers"]``, in priority
    order (Anthropic, then OpenAI).  With no key configured the Anthropic
    provider is still returned; it reports itself unavailable and every
    extraction fails as a retryable chunk error.
    """
    for name in available:
        if name in _LLM_PROVIDERS:
            return _LLM_PROVIDERS[name](settings=app_settings)
    return AnthropicLLMProvider(settings=app_settings)


# ---------------------------------------------------------------------------
# DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    ingestion: IngestionConfig | None = None,
    extraction_engine: IExtractionEngine | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance.

    Parameters
    ----------
    app_settings:
        Environment settings (API keys, config file path).  The database
        path and LLM provider choice are read from the merged config
        built by :func:`load_config`.
    ingestion:
        Ingestion tuning.  Read from the config's ``ingestion`` section
        when omitted.
    extraction_engine:
        Overrides the LLM-backed engine (tests, offline runs).

    Returns
    -------
    dict
        Named components, stored on ``app.state`` by the lifespan.
    """
    app_config = load_config(settings=app_settings)
    if ingestion is None:
        ingestion = ingestion_config(app_config)

    primary_llm = _build_llm_provider(app_settings, app_config["llm"]["available_providers"])
    engine = extraction_engine or LLMExtractionEngine(llm_provider=primary_llm)

    database_path = app_config["storage"]["database_path"]
    job_store = SQLiteJobStore(db_path=database_path)
    corpus_store = SQLiteCorpusStore(db_path=database_path)

    # One registry per lock scope, shared by every component that takes it.
    job_locks = KeyedLocks()
    organization_locks = KeyedLocks()

    chunk_processor = ChunkProcessor(
        job_store=job_store,
        extraction_engine=engine,
        synthesizer=Synthesizer(),
        job_locks=job_locks,
        extraction_timeout=ingestion.extraction_timeout_seconds,
        claim_lease_seconds=ingestion.chunk_claim_lease_seconds,
    )
    review_store = ReviewStore(job_store=job_store, job_locks=job_locks)
    generator = Generator(
        job_store=job_store,
        corpus_store=corpus_store,
        job_locks=job_locks,
        organization_locks=organization_locks,
        batch_size=ingestion.generation_batch_size,
    )
    ingestion_service = IngestionService(
        job_store=job_store,
        document_extractor=DocumentExtractor(ingestion),
        chunk_processor=chunk_processor,
        review_store=review_store,
        generator=generator,
        job_locks=job_locks,
        config=ingestion,
    )

    provider_registry = {
        "llm": primary_llm.is_available(),
        "llm_provider": primary_llm.get_provider_name(),
        "extraction_engine": engine.get_engine_name(),
        "job_store": job_store.get_provider_name(),
        "corpus_store": corpus_store.get_provider_name(),
    }

    return {
        "settings": app_settings,
        "config": app_config,
        "ingestion_config": ingestion,
        "primary_llm": primary_llm,
        "extraction_engine": engine,
        "job_store": job_store,
        "corpus_store": corpus_store,
        "chunk_processor": chunk_processor,
        "review_store": review_store,
        "generator": generator,
        "ingestion_service": ingestion_service,
        "provider_registry": provider_registry,
        "version": VERSION,
    }


async def initialize_stores(components: dict[str, Any]) -> None:
    """Create the job and corpus tables if needed."""
    await components["job_store"].initialize()
    await components["corpus_store"].initialize()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(components: dict[str, Any] | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    components:
        Pre-built components (see :func:`build_components`).  Built from the
        module settings at startup when omitted.
    """

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        built = components if components is not None else build_components(settings)
        for key, value in built.items():
            setattr(application.state, key, value)
        await initialize_stores(built)

        _logger.info(
            "app_startup",
            version=VERSION,
            environment=built["config"]["app"]["env"],
            llm_provider=built["provider_registry"]["llm_provider"],
            llm_available=built["provider_registry"]["llm"],
        )
        yield
        _logger.info("app_shutdown")

    application = FastAPI(
        title="trainkb API",
        version=VERSION,
        description=(
            "Upload company documents, extract service packages, sales "
            "guidelines and training topics chunk by chunk, review the merged "
            "result, then generate the organization's training corpus."
        ),
        lifespan=_lifespan,
    )

    # Last added runs first: logging wraps error handling.
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


app = create_app()

# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "trainkb.main:app",
        host=config["app"]["host"],
        port=config["app"]["port"],
        reload=(config["app"]["env"] == "development"),
    )
