"""Unit tests for settings and the YAML config loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from trainkb.config.loader import IngestionConfig, ingestion_config, load_config
from trainkb.config.settings import Settings
from trainkb.utils.errors import ConfigurationError


def _settings(tmp_path: Path, **overrides) -> Settings:
    defaults = {
        "anthropic_api_key": "",
        "openai_api_key": "",
        "config_path": str(tmp_path / "config.yaml"),
        "database_path": str(tmp_path / "kb.db"),
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestSettings:
    def test_available_providers(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, anthropic_api_key="a", openai_api_key="o")
        assert settings.get_available_llm_providers() == ["anthropic", "openai"]

    def test_no_providers(self, tmp_path: Path) -> None:
        assert _settings(tmp_path).get_available_llm_providers() == []


class TestLoadConfig:
    def test_missing_file_gives_env_sections_only(self, tmp_path: Path) -> None:
        config = load_config(settings=_settings(tmp_path))

        assert config["storage"]["database_path"] == str(tmp_path / "kb.db")
        assert "ingestion" not in config

    def test_yaml_merged_with_settings(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text(
            "app:\n  name: trainkb\n  port: 1\ningestion:\n  max_files: 2\n",
            encoding="utf-8",
        )
        config = load_config(settings=_settings(tmp_path, app_port=9000))

        assert config["app"]["name"] == "trainkb"
        assert config["app"]["port"] == 9000
        assert config["ingestion"] == {"max_files": 2}

    def test_explicit_path_wins(self, tmp_path: Path) -> None:
        other = tmp_path / "other.yaml"
        other.write_text("ingestion:\n  history_limit: 5\n", encoding="utf-8")
        config = load_config(str(other), settings=_settings(tmp_path))
        assert ingestion_config(config).history_limit == 5


class TestIngestionConfig:
    def test_defaults(self) -> None:
        config = ingestion_config({})
        assert config == IngestionConfig()
        assert config.max_files == 3
        assert config.max_file_size_bytes == 5 * 1024 * 1024
        assert "application/pdf" in config.allowed_content_types

    def test_section_overrides(self) -> None:
        config = ingestion_config({"ingestion": {"chunk_max_chars": 1000, "generation_batch_size": 10}})
        assert config.chunk_max_chars == 1000
        assert config.generation_batch_size == 10

    def test_invalid_value_raises_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid ingestion config"):
            ingestion_config({"ingestion": {"max_files": 0}})

    def test_repo_config_file_is_valid(self) -> None:
        path = Path(__file__).resolve().parents[2] / "config" / "config.yaml"
        config = load_config(str(path), settings=Settings(anthropic_api_key="", openai_api_key=""))
        assert ingestion_config(config).max_files == 3
