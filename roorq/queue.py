"""
Push notification messages (order confirmation, status updates) for the email consumer.
Backend: Redis (LPUSH) or AWS SQS when SQS_QUEUE_URL is set.
Publishing is best-effort: failures are logged and never fail the request.
"""
import json
import logging
import time

from redis.exceptions import RedisError
from botocore.exceptions import BotoCoreError, ClientError

from roorq.config import settings
from roorq.metrics import notifications_published_total
from roorq.redis_client import get_redis
from roorq.sqs_client import send_message

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE_KEY = "queue:notifications"


def _make_body(notification_type: str, data: dict) -> dict:
    return {
        "type": notification_type,
        "data": data,
        "queued_at": time.time(),
    }


async def push_to_queue(notification_type: str, data: dict) -> None:
    body = _make_body(notification_type, data)
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(NOTIFICATIONS_QUEUE_KEY, json.dumps(body, default=str))


async def publish_notification(notification_type: str, data: dict) -> bool:
    try:
        await push_to_queue(notification_type, data)
    except (RedisError, BotoCoreError, ClientError, OSError) as e:
        logger.warning("Failed to publish %s notification: %s", notification_type, e)
        return False
    notifications_published_total.labels(type=notification_type).inc()
    return True
