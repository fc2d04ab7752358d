"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from sdr_pipeline.models.enums import CapabilityBackend


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SDR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./data/sdr_pipeline.db"

    # Ollama LLM Configuration
    llm_ollama_base_url: str = "http://localhost:11434"
    llm_model_name: str = "gpt-oss:20b"
    llm_temperature: float = 0.0
    llm_request_timeout: int = 120
    llm_num_ctx: int = 16384
    llm_num_predict: int = 4096

    # Capability backends
    splitter_backend: CapabilityBackend = CapabilityBackend.HEURISTIC
    classifier_backend: CapabilityBackend = CapabilityBackend.HEURISTIC
    grader_backend: CapabilityBackend = CapabilityBackend.HEURISTIC
    splitter_fallback_to_heuristic: bool = True

    # System prompt overrides for the LLM backends; unset keeps the built-in prompt
    splitter_system_prompt: str | None = None
    classifier_system_prompt: str | None = None
    grader_system_prompt: str | None = None

    # Segmentation Configuration
    split_gap_seconds: int = 30
    splitter_chunk_max_chars: int = 25000
    splitter_chunk_overlap_lines: int = 30

    # Classification / Grading Configuration
    classify_batch_size: int = 10
    grade_max_workers: int = 4

    # Capability time limits (seconds)
    split_timeout_seconds: float = 90.0
    classify_timeout_seconds: float = 55.0
    grade_timeout_seconds: float = 55.0

    # Processing Configuration
    processing_error_max_chars: int = 1000

    # Monitoring / polling
    stuck_threshold_seconds: int = 300
    poll_interval_seconds: float = 3.0
    poll_list_interval_seconds: float = 10.0
    poll_max_interval_seconds: float = 60.0

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8100
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
