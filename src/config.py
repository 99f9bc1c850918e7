"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    cors_allowed_origins: str = ""  # Comma-separated, in addition to APP_BASE_URL
    app_secret_key: str
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (worker heartbeats, readiness)
    redis_url: str = "redis://localhost:6379/0"

    # Admin surface - HS256 tokens issued by the main ticketing app
    admin_jwt_secret: str = ""

    # Encryption of webhook subscription secrets at rest
    encryption_key: str = ""

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    # Outbound webhooks
    webhook_timeout_seconds: float = 10.0
    webhook_max_retries: int = 5
    webhook_backoff_base_seconds: int = 2
    webhook_retry_poll_seconds: int = 15
    webhook_retry_batch_size: int = 50

    # Inbound ingestion
    ledger_race_requery_attempts: int = 3
    ledger_race_requery_delay_ms: int = 50
    internal_client_name: str = "INTERNAL"
    system_user_email: str = "system@integration.platform"
    allow_internal_ingestion: bool = False  # Accept unauthenticated issues as the internal client

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
