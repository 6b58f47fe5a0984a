"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from config.llm_config import GenerationConfig


class Settings(BaseSettings):
    """Application configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    service_port: int = 5000
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"

    # ── Upstream (Gemini REST API) ───────────────────────────
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    default_model: str = "gemini-flash-latest"
    # Shown first in model pickers, in this order
    recommended_models: list[str] = ["gemini-flash-latest", "gemini-pro-latest"]
    # Applies to non-streaming calls only; streams are read without a timeout
    upstream_timeout: float = 60.0

    # ── Generation defaults (all optional, None = model default) ──
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None

    # ── Prompts ──────────────────────────────────────────────
    # Optional directory with question_prompt.txt / quiz_question_prompt.txt /
    # finalize_prompt.txt overriding the built-in templates
    prompt_dir: str = ""

    # ── Sessions ─────────────────────────────────────────────
    context_id_length: int = 40

    # ── Helpers ───────────────────────────────────────────────

    def get_default_generation_config(self) -> GenerationConfig:
        """Build a :class:`GenerationConfig` from global .env defaults."""
        return GenerationConfig(
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            max_output_tokens=self.max_output_tokens,
        )


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for application settings."""
    return Settings()
