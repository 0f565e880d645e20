from celery import Celery
from celery.signals import setup_logging

from loyalty.core.config import settings
from loyalty.core.logging import configure_logging

celery_app = Celery(
    "loyalty",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["loyalty.tasks.order_tasks", "loyalty.tasks.referral_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "expire-stale-referrals": {
            "task": "referrals.expire_stale",
            "schedule": 60 * 60,
        },
    },
)


@setup_logging.connect
def _setup_logging(**kwargs):
    configure_logging(settings.LOG_LEVEL)
