"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: str = "chainequity"
    postgres_password: str = "chainequity_dev_password"
    postgres_db: str = "chainequity"
    postgres_port: int = 5432

    # Redis (Celery broker and cross-process writer lock)
    redis_url: str = "redis://localhost:6379/0"

    # Chain
    rpc_url: Optional[str] = None
    token_contract_address: Optional[str] = None
    token_decimals: int = 18
    start_block: int = 0
    confirmations: int = 0
    rpc_timeout_seconds: int = 30

    # Live watcher
    watcher_autostart: bool = False
    poll_interval_seconds: float = 3.0
    max_batch_size: int = 1000
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0
    writer_lock_backend: str = "thread"  # "thread" or "redis"
    writer_lock_name: str = "chainequity:ingestion-writer"
    writer_lock_timeout_seconds: int = 600

    # API
    api_port: int = 4000
    api_host: str = "0.0.0.0"
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@localhost:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    def validate_production_settings(self):
        """Validate settings for production environment."""
        env = self.environment.lower()
        if env not in ("development", "test", "dev"):
            if not self.rpc_url:
                raise ValueError("RPC_URL is required outside development.")
            if not self.token_contract_address:
                raise ValueError("TOKEN_CONTRACT_ADDRESS is required outside development.")
            if self.max_batch_size <= 0:
                raise ValueError("MAX_BATCH_SIZE must be a positive number of blocks.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
