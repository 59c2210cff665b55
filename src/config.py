from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Supabase (optional corpus backend)
    supabase_url: str = ""
    supabase_key: str = ""

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    embedding_model: str = "text-embedding-3-small"
    llm_model: str = "claude-sonnet-4-20250514"

    # Transcript stream
    gap_timeout_ms: int = 5000

    # Extraction / task board
    extraction_backend: str = "rules"
    visibility_threshold: float = 0.5

    # Dispatch
    planner_gateway_url: str = ""  # Empty disables the HTTP planner gateway
    dispatch_max_attempts: int = 5
    dispatch_backoff_min_s: float = 0.5
    dispatch_backoff_max_s: float = 30.0
    dispatch_workers: int = 4

    # Retrieval
    compliance_epsilon: float = 0.02
    live_context_segments: int = 8
    context_weight: float = 0.2
    retrieval_max_results: int = 5
    corpus_max_attempts: int = 3
    corpus_backoff_s: float = 0.2

    # Facilitator
    scheduled_duration_min: int = 45
    time_reminder_fraction: float = 0.75

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
