"""Celery client the API uses to enqueue worker tasks.

Configured to match the worker (JSON serializer, UTC, Redis broker and
result backend). Tasks are addressed by name so the API never imports the
worker package.
"""

import logging
from typing import Optional

from celery import Celery

from chainequity_api.settings import get_settings

logger = logging.getLogger(__name__)

BACKFILL_TASK = "chainequity_worker.tasks.backfill_range"

_celery_app: Optional[Celery] = None


def get_celery_app() -> Celery:
    """Get or create the Celery client."""
    global _celery_app

    if _celery_app is None:
        settings = get_settings()
        _celery_app = Celery("chainequity_api")
        _celery_app.conf.update(
            broker_url=settings.redis_url,
            result_backend=settings.redis_url,
            task_serializer="json",
            accept_content=["json"],
            result_serializer="json",
            timezone="UTC",
            enable_utc=True,
            task_track_started=True,
            task_time_limit=60 * 60,  # matches worker config
            task_soft_time_limit=55 * 60,
        )
        logger.info("Initialized Celery client for chainequity_api")

    return _celery_app
