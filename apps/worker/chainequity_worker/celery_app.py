"""Celery application configuration."""

from celery import Celery

from chainequity_api.utils.log import configure_logging
from chainequity_worker.settings import get_settings

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)

celery_app = Celery(
    "chainequity_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.task_time_limit_seconds,
    task_soft_time_limit=settings.task_soft_time_limit_seconds,
)

# Import tasks to register them with Celery
# This must be done after celery_app is created
from chainequity_worker import tasks  # noqa: F401, E402
