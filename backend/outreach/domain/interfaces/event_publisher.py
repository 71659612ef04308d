"""
Event Publisher Interface
Realtime notification sink for run and organization channels
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


def run_channel(run_id: str) -> str:
    return f"run-{run_id}"


def org_channel(org_id: str) -> str:
    return f"org-{org_id}"


class EventPublisher(ABC):
    """
    Publishes realtime events to subscribers.

    Implementations must not raise: delivery failures are logged and dropped.
    """

    @abstractmethod
    async def trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass
