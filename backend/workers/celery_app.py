"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "stockpulse",
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
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.command_center.*": {"queue": "command_center"},
        "workers.scheduler.*": {"queue": "scheduler"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Jobs fan out into one refresh per scope via workers.scheduler.dispatch_command_center_refresh.
    beat_schedule={
        # Keeps the health trend populated and alerts fresh even when nobody opens the dashboard
        "refresh-command-center-hourly": {
            "task": "workers.scheduler.dispatch_command_center_refresh",
            "schedule": crontab(minute=15),
            "options": {"queue": "scheduler"},
        },
        "refresh-command-center-sites-nightly": {
            "task": "workers.scheduler.dispatch_command_center_refresh",
            "schedule": crontab(hour=1, minute=30),
            "kwargs": {"include_sites": True},
            "options": {"queue": "scheduler"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
