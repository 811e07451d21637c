# services/event_bus.py
import asyncio
import json
import logging
from typing import Any, AsyncIterator

import redis

logger = logging.getLogger(__name__)

FILE_COUNT_UPDATED = "file_count_updated"
BROWSE_ITEMS_UPDATED = "browse_items_updated"
FILE_UPDATED = "file_updated"
ALBUM_UPDATED = "album_updated"
COMMENTS_UPDATED = "comments_updated"

TOPICS = (FILE_COUNT_UPDATED, BROWSE_ITEMS_UPDATED, FILE_UPDATED, ALBUM_UPDATED, COMMENTS_UPDATED)


class EventBus:
    """Broadcast topics over Redis pub/sub."""

    def __init__(self, redis_client: redis.Redis, poll_interval: float = 0.1):
        self.redis_client = redis_client
        self.poll_interval = poll_interval

    @staticmethod
    def channel(topic: str) -> str:
        return f"feednana:{topic}"

    def publish(self, topic: str, payload: Any) -> int:
        """Live updates are advisory: a Redis outage is logged, not raised."""
        try:
            return self.redis_client.publish(self.channel(topic), json.dumps(payload, default=str))
        except redis.RedisError as e:
            logger.error(f"Failed to publish {topic}: {e}")
            return 0

    async def subscribe(self, topic: str) -> AsyncIterator[Any]:
        """Yield decoded payloads until the consumer stops iterating."""
        pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(self.channel(topic))
        try:
            while True:
                message = pubsub.get_message()
                if message is None:
                    await asyncio.sleep(self.poll_interval)
                    continue
                yield json.loads(message["data"])
        finally:
            pubsub.close()
