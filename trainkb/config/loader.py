"""YAML configuration loader with environment variable overrides.

# ─── CONFIGURATION HIERARCHY ──────────────────────────────────────────
#
#   1. Code defaults         IngestionConfig field defaults below
#   2. config/config.yaml    static defaults checked into the repo
#   3. .env / environment    app/llm/storage values via Settings
#
# load_config() reads the YAML file, deep-merges the Settings-derived
# sections on top, and returns a plain dict.  ingestion_config() turns the
# "ingestion" section into a validated IngestionConfig, filling anything
# the YAML omits from the code defaults.
# ──────────────────────────────────────────────────────────────────────
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from trainkb.config.settings import Settings
from trainkb.utils.errors import ConfigurationError

_DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


class IngestionConfig(BaseModel):
    """Tunables for upload, parsing and generation."""

    model_config = ConfigDict(frozen=True)

    max_files: int = Field(default=3, ge=1)
    max_file_size_mb: float = Field(default=5.0, gt=0)
    allowed_content_types: tuple[str, ...] = (
        "application/pdf",
        _DOCX_CONTENT_TYPE,
        "text/plain",
    )
    # Characters per chunk handed to the extraction engine.
    chunk_max_chars: int = Field(default=32000, ge=100)
    # Per-call bound on the extraction engine; a timeout is a retryable failure.
    extraction_timeout_seconds: float = Field(default=120.0, gt=0)
    # A claim older than this is considered abandoned and may be taken over.
    chunk_claim_lease_seconds: float = Field(default=300.0, gt=0)
    # Scenario templates are inserted in batches of this size.
    generation_batch_size: int = Field(default=50, ge=1)
    history_limit: int = Field(default=20, ge=1)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)


def load_config(path: str | None = None, settings: Settings | None = None) -> dict[str, Any]:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file.  Defaults to
              ``settings.config_path``.
        settings: Settings instance; a fresh one is built when omitted.

    Returns:
        Fully resolved configuration dictionary.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    env_overrides = {
        "app": {
            "host": settings.app_host,
            "port": settings.app_port,
            "env": settings.app_env,
        },
        "llm": {
            "available_providers": settings.get_available_llm_providers(),
        },
        "storage": {
            "database_path": settings.database_path,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def ingestion_config(config: dict[str, Any]) -> IngestionConfig:
    """Build an :class:`IngestionConfig` from the ``ingestion`` config section.

    Raises:
        ConfigurationError: If a value in the section fails validation.
    """
    section = config.get("ingestion") or {}
    try:
        return IngestionConfig.model_validate(section)
    except ValidationError as exc:
        raise ConfigurationError(message=f"Invalid ingestion config: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
