"""Configuration settings for Vigil."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # Postgres Configuration (baselines and monitoring checks)
    database_url: str = ""
    database_pool_size: int = 5
    database_echo: bool = False

    # Collection Configuration
    collection_batch_size: int = 5
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 30000
    http_timeout_seconds: float = 30.0

    # Monitoring Configuration
    expiring_evidence_days: int = 30
    alert_retention_days: int = 90

    # Scheduler Configuration
    scheduler_startup_delay_seconds: float = 30.0
    job_history_limit: int = 100

    # Tracing Configuration
    tracing_enabled: bool = True
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
