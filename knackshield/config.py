"""Configuration for knackshield."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Upstream (Knack)
    knack_app_id: str = ""
    knack_api_key: str = ""
    knack_base_url: str = "https://api.knack.com/v1"
    upstream_timeout_seconds: float = 30.0
    upstream_requests_per_second: int = 10  # Knack's documented ceiling
    upstream_rows_per_page: int = 1000

    # Cache
    cache_dir: str = ".cache/knack"
    cache_default_ttl_seconds: float = 1800.0  # 30 minutes

    # Retry
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 30.0  # seconds
    retry_backoff_factor: float = 2.0

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: float = 60.0  # seconds

    # Request gate
    api_key_sync: Optional[str] = None
    api_key_admin: Optional[str] = None
    api_key_cron: Optional[str] = None  # Falls back to the sync key
    rate_limit_cleanup_interval: float = 300.0  # 5 minutes

    # Audit
    audit_log_capacity: int = 1000

    # Secrets
    vault_enabled: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
