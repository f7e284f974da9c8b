"""Celery application for background maintenance of scheduled payments.

Start a worker (with the beat scheduler embedded) with:
    celery -A app.celery_app worker -B -Q maintenance -l info --concurrency=1
"""

from celery import Celery

from config import settings

celery_app = Celery("blockpal_schedules", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.update(
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_retry_delay=30,  # seconds
    # a sweep that has not finished by the next beat is superseded by it
    task_time_limit=int(settings.SWEEP_INTERVAL_SECONDS) * 2,
    result_expires=3600,
    task_routes={
        "app.workers.sweeper.sweep_stuck": {"queue": "maintenance"},
    },
    beat_schedule={
        "sweep-stuck-payments": {
            "task": "app.workers.sweeper.sweep_stuck",
            "schedule": settings.SWEEP_INTERVAL_SECONDS,
            "options": {"expires": settings.SWEEP_INTERVAL_SECONDS},
        }
    },
)

# --- Ensure tasks are registered ---
import app.workers.sweeper  # noqa: E402,F401
