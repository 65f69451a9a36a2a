"""Celery app configuration."""
from celery import Celery
from celery.schedules import crontab

from helpdesk.config import get_settings

settings = get_settings()

celery_app = Celery(
    "helpdesk",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["helpdesk.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes max per task
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    beat_schedule={
        "auto-close-pending-tickets": {
            "task": "helpdesk.workers.tasks.auto_close_pending_tickets",
            "schedule": crontab(minute=0),  # hourly
        },
    },
)
