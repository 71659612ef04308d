"""
In-Memory Event Publisher
Records events in process (EVENT_BACKEND=memory and tests)
"""
import logging
from typing import Any, Dict, List, Optional

from outreach.domain.interfaces.event_publisher import EventPublisher

logger = logging.getLogger(__name__)


class InMemoryEventPublisher(EventPublisher):
    """Keeps published events as (channel, event, data) tuples."""

    def __init__(self, max_events: int = 1000):
        self.events: List[tuple] = []
        self._max_events = max_events

    async def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self.events.append((channel, event, data))
        if len(self.events) > self._max_events:
            self.events = self.events[-self._max_events:]
        logger.debug(f"Event {event} on {channel}")

    def find(self, event: str, channel: Optional[str] = None) -> List[Dict[str, Any]]:
        """Payloads of recorded events matching a name (and channel)."""
        return [
            data for ch, name, data in self.events
            if name == event and (channel is None or ch == channel)
        ]

    def clear(self) -> None:
        self.events.clear()

    async def close(self) -> None:
        pass
