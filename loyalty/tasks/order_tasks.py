import logging

from celery import Task
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from loyalty.core.config import settings
from loyalty.core.database import SessionLocal
from loyalty.core.exceptions import ExternalServiceError
from loyalty.schemas.order import ShopifyOrderPayload
from loyalty.services.order_sync_service import OrderSyncService
from loyalty.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ExternalServiceError, OperationalError)


class DatabaseTask(Task):
    """Base task with database session"""
    _db = None

    @property
    def db(self) -> Session:
        if self._db is None:
            self._db = SessionLocal()
        return self._db

    def after_return(self, *args, **kwargs):
        if self._db is not None:
            self._db.close()
            self._db = None


def _sync(task: DatabaseTask, payload: dict) -> dict:
    order = ShopifyOrderPayload.model_validate(payload)
    try:
        result = OrderSyncService(task.db).sync_from_shopify(order)
    except RETRYABLE_ERRORS:
        task.db.rollback()
        logger.warning(
            "Order %s sync failed (attempt %d of %d)",
            order.id, task.request.retries + 1, task.max_retries + 1,
        )
        raise

    return {
        "status": "success",
        "order_id": result.order_id,
        "created": result.created,
        "redemptions": result.redemptions,
        "matched_by_customer": result.matched_by_customer,
    }


@celery_app.task(
    base=DatabaseTask,
    bind=True,
    name="orders.sync_from_shopify",
    autoretry_for=RETRYABLE_ERRORS,
    retry_backoff=settings.ORDER_SYNC_RETRY_BACKOFF,
    retry_jitter=True,
    max_retries=settings.ORDER_SYNC_MAX_RETRIES,
)
def sync_order_from_shopify(self, payload: dict):
    """Ingest an orders/create webhook"""
    return _sync(self, payload)


@celery_app.task(
    base=DatabaseTask,
    bind=True,
    name="orders.update_from_shopify",
    autoretry_for=RETRYABLE_ERRORS,
    retry_backoff=settings.ORDER_SYNC_RETRY_BACKOFF,
    retry_jitter=True,
    max_retries=settings.ORDER_SYNC_MAX_RETRIES,
)
def update_order_from_shopify(self, payload: dict):
    """Ingest an orders/updated webhook; redemption runs once the order is paid"""
    return _sync(self, payload)
