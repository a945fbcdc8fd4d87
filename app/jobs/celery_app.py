"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from app.jobs.refresh import run_refresh

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
refresh_minutes = int(os.environ.get("VIEW_REFRESH_MINUTES", "30"))

REFRESH_TASK = "app.jobs.celery_app.refresh_shop_view_task"

celery_app = Celery("shop_discovery", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = "UTC"
celery_app.conf.beat_schedule = {
    "refresh-shop-view": {
        "task": REFRESH_TASK,
        "schedule": crontab(minute=f"*/{refresh_minutes}"),
    },
}


@celery_app.task(name=REFRESH_TASK)
def refresh_shop_view_task() -> None:
    run_refresh()
