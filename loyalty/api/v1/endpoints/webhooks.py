import logging

from fastapi import APIRouter, status

from loyalty.schemas.order import ShopifyOrderPayload
from loyalty.tasks.order_tasks import sync_order_from_shopify, update_order_from_shopify

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/shopify/orders/create", status_code=status.HTTP_202_ACCEPTED)
async def shopify_order_created(payload: ShopifyOrderPayload):
    """Queue an orders/create delivery for ingestion"""
    task = sync_order_from_shopify.delay(payload.model_dump(mode="json"))
    logger.info("Queued order %s for sync (task %s)", payload.id, task.id)
    return {"status": "queued", "task_id": task.id}


@router.post("/shopify/orders/updated", status_code=status.HTTP_202_ACCEPTED)
async def shopify_order_updated(payload: ShopifyOrderPayload):
    task = update_order_from_shopify.delay(payload.model_dump(mode="json"))
    logger.info("Queued order %s for update (task %s)", payload.id, task.id)
    return {"status": "queued", "task_id": task.id}
