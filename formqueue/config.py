"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Queue Engine
    default_max_attempts: int = 3
    completed_retention_seconds: float = 10.0
    failed_retention_seconds: float = 30.0
    inter_job_pause_seconds: float = 0.1
    shutdown_timeout_seconds: float = 10.0

    # Simulated work step for form submissions
    work_min_seconds: float = 1.0
    work_max_seconds: float = 3.0
    work_external_call_seconds: float = 0.5
    work_failure_rate: float = 0.1

    # Offline client
    server_url: str = "http://localhost:8000"
    offline_store_url: str = "sqlite+aiosqlite:///offline_jobs.db"
    request_timeout_seconds: float = 10.0
    probe_path: str = "/live"
    probe_timeout_seconds: float = 1.0
    probe_interval_seconds: float = 5.0
    reconcile_interval_seconds: float = 30.0
    record_pause_seconds: float = 0.5
    inflight_stale_seconds: float = 60.0

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "formqueue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
