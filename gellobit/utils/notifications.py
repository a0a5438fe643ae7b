from __future__ import annotations
import logging
import os
from typing import Any, Dict

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
NOTIFICATIONS_QUEUE = os.getenv("NOTIFICATIONS_QUEUE", "notifications")
# consumed by the delivery worker, which lives outside this service
NOTIFICATIONS_JOB = os.getenv("NOTIFICATIONS_JOB", "notifications.jobs.deliver_new_opportunity")


class NotificationSink:
    """Fire-and-forget: enqueue a delivery job and move on."""

    def __init__(self, queue: Queue):
        self.queue = queue

    def __call__(self, event: Dict[str, Any]) -> None:
        try:
            self.queue.enqueue(NOTIFICATIONS_JOB, event, result_ttl=0, failure_ttl=86400)
            logger.info("Queued notification for %s %s", event.get("entity_type"), event.get("id"))
        except RedisError as e:
            logger.warning("Notification enqueue failed for %s: %s", event.get("id"), e)


def get_notification_sink() -> NotificationSink | None:
    if os.getenv("NOTIFICATIONS_ENABLED", "true").lower() not in {"1", "true", "yes"}:
        return None
    conn = Redis.from_url(REDIS_URL)
    return NotificationSink(Queue(NOTIFICATIONS_QUEUE, connection=conn))
