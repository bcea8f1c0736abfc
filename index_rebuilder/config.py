"""Configuration management using pydantic-settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Rebuild settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings (source records and the persistent job table)
    db_server: str = "localhost"
    db_name: str = "invoicing"
    db_user: str = "postgres"
    db_password: str = ""
    db_port: int = 5432
    db_pool_size: int = 5
    db_max_overflow: int = 10
    sql_echo: bool = False
    database_url_override: Optional[str] = None

    # Meilisearch settings
    meilisearch_url: str = "http://localhost:7700"
    meilisearch_api_key: Optional[str] = None
    meilisearch_timeout: int = 10
    meilisearch_task_timeout_ms: int = 60_000

    # Redis settings (ARQ queue, list-backed queues, rebuild lock)
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0

    # Queue settings
    # queue_driver: "arq" (sorted set), "redis" (list), "database" (jobs table), "sync"
    queue_driver: str = "arq"
    queue_name: str = "arq:queue"
    queue_redis_prefix: str = "queues:"
    queue_jobs_table: str = "jobs"

    # Rebuild settings
    index_suffix: str = "_v2"
    rebuild_chunk_size: int = 500
    rebuild_max_wait_seconds: float = 600.0
    rebuild_poll_interval_seconds: float = 2.0
    rebuild_stable_polls: int = 15  # ~30s at the default poll interval
    rebuild_fallback_delay_seconds: float = 10.0
    rebuild_lock_enabled: bool = True
    rebuild_lock_ttl_seconds: int = 3600

    @property
    def database_url(self) -> str:
        """Build PostgreSQL async connection string."""
        if self.database_url_override:
            return self.database_url_override
        from urllib.parse import quote_plus
        return (
            f"postgresql+asyncpg://{self.db_user}:{quote_plus(self.db_password)}"
            f"@{self.db_server}:{self.db_port}/{self.db_name}"
        )


# Global settings instance
settings = Settings()
