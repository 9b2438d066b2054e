"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads each field from (highest priority first):
#
#   1. Environment variables  e.g. ANTHROPIC_API_KEY=sk-ant-...
#   2. The .env file in the working directory
#   3. The defaults below
#
# Field `database_path` maps to env var `DATABASE_PATH`, and so on.
#
# Ingestion tuning (file limits, chunk size, timeouts) is NOT here: it
# lives in config/config.yaml and is read by trainkb.config.loader.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """trainkb application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM Providers ===
    # Empty string = "not configured"; provider selection in main.py skips
    # providers with empty keys.
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoints (TogetherAI, etc.)
    openai_text_model: str = ""

    # === Storage ===
    # Jobs, chunks, fragments and the generated corpus share one SQLite file.
    database_path: str = "data/trainkb.db"

    # === Ingestion config file ===
    config_path: str = "config/config.yaml"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return the LLM provider names that have a non-empty API key."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
