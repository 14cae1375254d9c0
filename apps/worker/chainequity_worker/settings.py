"""Worker settings - the API settings plus worker-only knobs."""

from functools import lru_cache

from chainequity_api.settings import Settings


class WorkerSettings(Settings):
    """Worker settings - consistent with API settings."""

    # Celery
    task_time_limit_seconds: int = 60 * 60
    task_soft_time_limit_seconds: int = 55 * 60
    backfill_max_retries: int = 5

    # Seconds a backfill waits for the writer lock before retrying later
    writer_lock_blocking_seconds: float = 10.0
    writer_lock_retry_countdown_seconds: int = 30


@lru_cache()
def get_settings() -> WorkerSettings:
    """Get cached settings instance."""
    return WorkerSettings()
