"""
Sales Service — イベント定義

注文がコミットされたことを他サービスへ通知するイベント。
Redis Pub/Sub の order_events チャネルに JSON で発行する。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .models import Order, OrderLine

logger = logging.getLogger(__name__)

ORDER_EVENTS_CHANNEL = "order_events"


class OrderPlaced(BaseModel):
    """注文が作成された"""
    order_id: str
    customer_id: str
    products: list[OrderLine]
    total_amount: float
    status: str
    timestamp: datetime


async def publish_order_placed(redis: aioredis.Redis | None, order: Order) -> None:
    """
    コミット済みの注文を通知する。

    通知に失敗しても注文自体は確定しているので、ログに残すだけにする。
    """
    if redis is None:
        return

    event = OrderPlaced(
        order_id=order.id,
        customer_id=order.customer_id,
        products=order.products,
        total_amount=order.total_amount,
        status=order.status.value,
        timestamp=order.order_date,
    )
    try:
        await redis.publish(
            ORDER_EVENTS_CHANNEL,
            json.dumps(
                {
                    "event_type": "OrderPlaced",
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except (RedisError, OSError):
        logger.exception("Failed to publish OrderPlaced for order %s", order.id)
