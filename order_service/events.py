"""
Order Service — domain events

Published on the `order_events` Redis channel after the transaction that
produced them has committed. Events are named in the past tense and are
immutable. Publishing is best-effort: the database is the source of truth,
so a lost notification never rolls back an order.
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

CHANNEL = "order_events"


class OrderLineSnapshot(BaseModel):
    product_id: str
    quantity: int
    price_at_order: int


class OrderCreated(BaseModel):
    """An order was persisted after a confirmed payment."""
    order_id: str
    user_id: str
    total_amount: int
    payment_reference: str
    payment_status: str
    items: list[OrderLineSnapshot]
    timestamp: datetime


class OrderCancelled(BaseModel):
    """An order was cancelled and its stock restored."""
    order_id: str
    user_id: str
    restored: list[OrderLineSnapshot]
    timestamp: datetime


async def publish(redis: aioredis.Redis | None, event: BaseModel) -> None:
    if redis is None:
        return
    payload = json.dumps(
        {"event_type": type(event).__name__, "data": event.model_dump(mode="json")},
        default=str,
    )
    try:
        await redis.publish(CHANNEL, payload)
    except RedisError:
        logger.exception("Failed to publish %s", type(event).__name__)
