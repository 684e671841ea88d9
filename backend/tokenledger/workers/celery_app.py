from celery import Celery
from celery.schedules import crontab

from tokenledger.core.config import settings

celery_app = Celery(
    "token_ledger",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tokenledger.workers.tasks.monthly_reset",
        "tokenledger.workers.tasks.token_expiration",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_default_queue="default",
    task_queues={
        "default": {"exchange": "default", "routing_key": "default"},
        "ledger": {"exchange": "ledger", "routing_key": "ledger"},
    },
    beat_schedule={
        "monthly-quota-reset": {
            "task": "tasks.monthly_reset",
            "schedule": crontab(minute=5, hour=0),
        },
        "token-expiration": {
            "task": "tasks.token_expiration",
            "schedule": crontab(minute=15),
        },
    },
)
