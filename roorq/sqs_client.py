"""
SQS transport for notification messages. Used instead of Redis when SQS_QUEUE_URL is set.
"""
import asyncio
import json
import logging
from typing import Any

import boto3

from roorq.config import settings

logger = logging.getLogger(__name__)

_sqs_client: Any = None


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def send_message(body: dict) -> str | None:
    """
    Publish one notification. The notification type also goes into a message attribute
    so the email consumer can filter without parsing the body. Returns the SQS MessageId.
    """
    client = _get_client()
    response = await asyncio.to_thread(
        client.send_message,
        QueueUrl=settings.sqs_queue_url,
        MessageBody=json.dumps(body, default=str),
        MessageAttributes={
            "type": {"DataType": "String", "StringValue": str(body.get("type", "UNKNOWN"))},
        },
    )
    message_id = response.get("MessageId")
    logger.debug("Queued %s notification message_id=%s", body.get("type"), message_id)
    return message_id
