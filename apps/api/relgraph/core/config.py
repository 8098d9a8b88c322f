from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Relationship Graph API"
    environment: str = "dev"
    api_prefix: str = "/v1"
    log_level: str = "INFO"

    database_dsn: str = "sqlite:///./relgraph.db"
    db_pool_size: int = Field(default=20, ge=1, le=200)
    db_max_overflow: int = Field(default=40, ge=0, le=400)
    db_pool_timeout_seconds: int = Field(default=60, ge=1, le=600)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86400)

    redis_url: str = "redis://redis:6379/0"
    queue_mode: str = "redis"
    queue_retry_max: int = Field(default=2, ge=0, le=10)
    queue_retry_interval_seconds: int = Field(default=60, ge=5, le=3600)

    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    sync_default_max_items: int = Field(default=100, ge=1, le=1000)
    sync_max_items_limit: int = Field(default=500, ge=1, le=5000)
    sync_create_organizations: bool = False

    webhook_allow_broadcast: bool = False
    webhook_signature_header: str = "x-hub-signature"

    strength_recency_half_life_days: float = Field(default=30.0, gt=0.0, le=3650.0)
    strength_frequency_window_days: int = Field(default=90, ge=1, le=3650)
    strength_frequency_saturation: int = Field(default=30, ge=1, le=10000)
    strength_trend_window_days: int = Field(default=45, ge=1, le=3650)
    strength_trend_tolerance: float = Field(default=0.1, ge=0.0, le=1.0)

    domain_auto_apply_threshold: float = Field(default=0.90, ge=0.0, le=1.0)
    domain_similarity_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    extra_blocked_domains: str = ""

    internal_email_domains: str = ""
    internal_user_emails: str = ""

    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    enrichment_enabled: bool = False
    strength_ai_summary_enabled: bool = False

    fireflies_api_url: str = "https://api.fireflies.ai/graphql"
    gmail_api_url: str = "https://gmail.googleapis.com/gmail/v1"
    provider_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
