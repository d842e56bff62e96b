from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from redis.exceptions import RedisError

from app.core.context import get_request_id
from app.core.settings import settings
from app.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

APPLICATION_APPROVED = "loan_application.approved"
APPLICATION_REJECTED = "loan_application.rejected"
APPROVAL_RECORDED = "loan_application.approval_recorded"
LOAN_DISBURSED = "loan.disbursed"
PAYMENT_RECORDED = "loan.payment_recorded"
LOAN_COMPLETED = "loan.completed"
LOAN_RESTRUCTURE_REQUESTED = "loan.restructure_requested"
LOAN_RESTRUCTURED = "loan.restructured"
LOAN_TRANSFER_REQUESTED = "loan.transfer_requested"
LOAN_TRANSFERRED = "loan.transferred"
LOAN_CLOSED = "loan.closed"
PAYMENT_REMINDER = "loan.payment_reminder"


def build_event(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event": event,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "request_id": get_request_id(),
        "payload": payload,
    }


async def publish(event: str, payload: dict[str, Any]) -> None:
    """Fire-and-forget: delivery failures are logged and never reach the caller."""
    message = json.dumps(build_event(event, payload), default=str)
    try:
        redis = get_redis_client()
        await redis.publish(settings.notification_channel, message)
    except (RedisError, OSError) as exc:
        logger.warning("Notification publish failed event=%s error=%s", event, exc)
