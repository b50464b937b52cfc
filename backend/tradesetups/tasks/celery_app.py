"""
Trade Setups — Celery Application Factory

Creates a Celery app with Redis broker and result backend.
The beat schedule refreshes historical signals once a day after the B3 close.
"""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from tradesetups.config import get_settings


def make_celery() -> Celery:
    """Create and configure the Celery application."""
    settings = get_settings()

    app = Celery(
        "tradesetups",
        broker=settings.redis_url,
        backend=settings.redis_url,
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="America/Sao_Paulo",
        enable_utc=True,

        # One ticker history at a time per worker; scans are CPU-bound.
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_reject_on_worker_lost=True,

        result_expires=3600,

        beat_schedule={
            "sync-signals-after-close": {
                "task": "tradesetups.tasks.signal_tasks.sync_all_signals_task",
                "schedule": crontab(hour=19, minute=0, day_of_week="mon-fri"),
            },
        },
    )

    app.autodiscover_tasks(["tradesetups.tasks"], related_name="signal_tasks")

    return app


# Module-level instance for imports
celery_app = make_celery()
