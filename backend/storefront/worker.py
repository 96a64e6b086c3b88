"""
Celery application for background reconciliation work.

Run a worker with beat embedded:

    celery -A storefront.worker worker --beat --loglevel=info
"""

from celery import Celery

from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.services.payments.tasks import FINALIZE_PENDING_ORDERS_TASK

settings = get_settings()
configure_logging()

celery_app = Celery(
    "storefront",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["storefront.services.payments.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "finalize-pending-orders": {
            "task": FINALIZE_PENDING_ORDERS_TASK,
            "schedule": float(settings.pending_order_sweep_interval_seconds),
        },
    },
)
