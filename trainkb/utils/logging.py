"""structlog configuration for the API, the CLI and the pipeline.

Events are rendered by a coloured console renderer during development and
as one JSON object per line in production (``APP_ENV=production`` or
``json_output=True``).  Standard-library loggers (uvicorn, aiosqlite, the
LLM SDKs) go through the same processors so every line has one format.

Pipeline code logs snake_case event names with key/value fields::

    logger = get_logger(__name__)
    logger.info("chunk_parsed", job_id=job.id, ordinal=3)

Fields bound with :func:`log_context` (the HTTP middleware binds the
organization of every request) are added to each event logged inside it.
"""

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

# Chatty at INFO (one line per HTTP request to the model API).
_QUIET_LIBRARIES = ("httpx", "httpcore", "anthropic", "openai", "aiosqlite")


def _processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Render JSON even outside production.
    """
    level = logging.getLevelName(log_level.upper())
    if os.environ.get("APP_ENV", "development") == "production":
        json_output = True
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[*_processors(), renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_processors(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger bound with ``logger_name``.

    Configures default logging on first use so that tests and the CLI can
    log before (or without) :func:`configure_logging` being called.
    """
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind *fields* to every event logged in this block (None values are skipped)."""
    with structlog.contextvars.bound_contextvars(
        **{key: value for key, value in fields.items() if value is not None}
    ):
        yield
