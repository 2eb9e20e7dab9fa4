from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "chat-notifier"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "chat:notif"
    presence_key_prefix: str = "socket"
    mailer_base_url: str = "http://localhost:8025"
    mailer_api_key: str | None = None
    mailer_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 20.0
    poll_batch_size: int = 100
    max_backoff_seconds: float = 120.0
    run_poller_in_api: bool = True
    dedup_grace_seconds: int = 300
    dedup_min_ttl_seconds: int = 60
    snippet_max_length: int = 140
    requeue_failed_jobs: bool = False
    requeue_delay_seconds: int = 60
    requeue_max_attempts: int = 3
    otel_enabled: bool = True
    otel_service_name: str = "chat-notifier"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="CN_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
