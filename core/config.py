# core/config.py
from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized worker configuration.

    Loads environment variables from `.env` and provides
    typed access across the worker, handlers and services.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Database
    # ─────────────────────────────────────────────
    database_url: str
    database_url_sync: str | None = None

    # ─────────────────────────────────────────────
    # Supabase Storage
    # ─────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    upload_bucket: str = "uploads"
    generated_bucket: str = "generated"
    photoshoot_bucket: str = "generated"
    signed_url_ttl_seconds: int = 3600

    # ─────────────────────────────────────────────
    # Replicate
    # ─────────────────────────────────────────────
    replicate_api_token: str = ""
    replicate_model_name: str = "google/nano-banana"

    provider_timeout_seconds: float = 120.0
    http_timeout_seconds: float = 30.0
    network_retry_attempts: int = 3

    # ─────────────────────────────────────────────
    # Worker
    # ─────────────────────────────────────────────
    worker_poll_interval: float = 2.5
    job_max_attempts: int = 5
    job_backoff_base_seconds: float = 30.0
    job_backoff_cap_seconds: float = 3600.0
    job_lock_timeout_seconds: int = 3600
    # must stay well below job_lock_timeout_seconds
    job_heartbeat_interval: float = 60.0
    stale_sweep_interval: float = 60.0

    # ─────────────────────────────────────────────
    # Generation defaults
    # ─────────────────────────────────────────────
    thumbnail_size: int = 512
    max_reference_images: int = 4
    default_photoshoot_shots: int = 3

    log_level: str = "INFO"


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()
