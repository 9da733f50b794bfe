"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging

from receipt_tracker.config import get_settings

settings = get_settings()

app = Celery(
    "receipt_tracker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["receipt_tracker.tasks.receipt_processing"],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,  # redeliver if a worker dies mid-extraction
    task_time_limit=300,  # 5 minutes max per task
    task_soft_time_limit=240,  # 4 minutes soft limit
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    from receipt_tracker.logging_config import configure_logging

    configure_logging()
