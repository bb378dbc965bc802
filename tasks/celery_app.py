"""
tasks/celery_app.py
Celery application instance, used when NOTIFICATION_BACKEND=celery.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --concurrency=4 -Q notifications
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "legal_marketplace",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.notification_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the task
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Notifications are fire-and-forget; nobody reads their results
    task_ignore_result=True,
    result_expires=3600,

    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
    },

    worker_prefetch_multiplier=1,
)
