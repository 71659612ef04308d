"""
Redis Event Publisher
Publishes realtime run/org events over Redis pub/sub
"""
import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis

from outreach.domain.interfaces.event_publisher import EventPublisher
from outreach.utils.time_utils import isoformat

logger = logging.getLogger(__name__)


class RedisEventPublisher(EventPublisher):
    """
    Publishes {"event", "data", "timestamp"} JSON messages.

    The Redis channel is the event channel name (run-{id} / org-{id})
    under a common prefix so a gateway can psubscribe to all of them.
    """

    CHANNEL_PREFIX = "outreach:"

    def __init__(self, redis_url: str = "redis://localhost:6379", redis_client: Optional[redis.Redis] = None):
        self._redis_url = redis_url
        self._redis = redis_client

    async def _get_client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        return self._redis

    async def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        try:
            message = json.dumps({
                "event": event,
                "data": data,
                "timestamp": isoformat(),
            }, default=str)
            client = await self._get_client()
            await client.publish(f"{self.CHANNEL_PREFIX}{channel}", message)
            logger.debug(f"Published {event} on {channel}")
        except Exception as e:
            logger.error(f"Failed to publish {event} on {channel}: {e}")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
