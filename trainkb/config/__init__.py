"""Configuration module: exports Settings, the YAML loader and IngestionConfig."""

from trainkb.config.loader import IngestionConfig, ingestion_config, load_config
from trainkb.config.settings import Settings

__all__ = ["IngestionConfig", "Settings", "ingestion_config", "load_config"]
