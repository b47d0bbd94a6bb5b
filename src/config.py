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
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Encryption (Fernet key for integration_credentials)
    encryption_key: str = ""

    # Which credential set to load per platform: sandbox or production
    credential_environment: str = "sandbox"

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for alerts

    # Webhook processing
    webhook_max_retries: int = 5
    webhook_retry_base_delay_seconds: float = 1.0
    webhook_retry_max_delay_seconds: float = 60.0
    webhook_worker_enabled: bool = True

    # Reconciliation
    sync_scheduler_enabled: bool = True
    sync_interval_hours: int = 6
    sync_lookback_hours: int = 24
    sync_page_size: int = 1000
    sync_missing_alert_threshold: int = 10
    webhook_only_platforms: str = "hotmart,cartpanda"  # Comma-separated slugs never polled

    @property
    def webhook_only_platform_slugs(self) -> set[str]:
        return {
            slug.strip().lower()
            for slug in self.webhook_only_platforms.split(",")
            if slug.strip()
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
