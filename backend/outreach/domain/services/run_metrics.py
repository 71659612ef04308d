"""
Run Metrics Aggregator
Maintains the nested counters in a run's metadata blob
"""
import asyncio
import copy
import logging
from typing import Any, Dict, Optional

from outreach.domain.interfaces.event_publisher import EventPublisher, run_channel
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.row import RowStatus
from outreach.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def apply_increment(metadata: Dict[str, Any], path: str, amount: int = 1) -> Dict[str, Any]:
    """
    Add amount to the counter at a dot path, in place.

    Missing intermediate keys are created as empty dicts, a missing or
    non-numeric leaf counts as 0, and the result is floored at 0.
    """
    keys = path.split(".")
    node = metadata
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child

    leaf = keys[-1]
    current = node.get(leaf)
    if not isinstance(current, (int, float)) or isinstance(current, bool):
        current = 0
    node[leaf] = max(0, current + amount)
    return metadata


class RunMetricsAggregator:
    """
    Read-modify-write updates of run counters.

    Writes from one process are serialized per run across every aggregator
    instance (the API builds one per request); writes from separate
    processes (worker and API) can still interleave, so counters are
    telemetry and row status stays the source of truth.
    """

    # Shared by all instances in the process
    _locks: Dict[str, asyncio.Lock] = {}

    def __init__(self, repository: RunRepository, events: EventPublisher):
        self._repository = repository
        self._events = events

    @classmethod
    def _lock_for(cls, run_id: str) -> asyncio.Lock:
        if run_id not in cls._locks:
            cls._locks[run_id] = asyncio.Lock()
        return cls._locks[run_id]

    async def increment(self, run_id: str, path: str, amount: int = 1) -> Optional[Dict[str, Any]]:
        """Apply a single named increment, e.g. increment(run_id, "calls.completed")."""
        return await self.apply(run_id, {path: amount})

    async def apply(
        self,
        run_id: str,
        increments: Dict[str, int],
        run_fields: Optional[Dict[str, Any]] = None,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Apply several increments (and optional metadata.run fields) in one write.

        Args:
            run_id: Run to update
            increments: Dot path -> amount (negative to decrement)
            run_fields: Values merged into metadata["run"]
            fields: Run columns written together with the metadata (e.g. status)

        Returns:
            The persisted metadata, or None if the run does not exist
        """
        async with self._lock_for(run_id):
            run = await self._repository.get_run(run_id)
            if run is None:
                logger.warning(f"Cannot update metrics, run not found: {run_id}")
                return None

            metadata = copy.deepcopy(run.metadata or {})
            for path, amount in increments.items():
                apply_increment(metadata, path, amount)

            if run_fields:
                run_info = metadata.get("run")
                if not isinstance(run_info, dict):
                    run_info = {}
                    metadata["run"] = run_info
                run_info.update(run_fields)

            update = dict(fields or {})
            update.update({"metadata": metadata, "updated_at": utc_now()})
            await self._repository.update_run(run_id, update)

        logger.debug(f"Run {run_id} metrics updated: {increments}")
        await self._events.trigger(run_channel(run_id), "metrics-updated", {
            "runId": run_id,
            "metrics": metadata,
        })
        return metadata

    async def update_run_info(
        self,
        run_id: str,
        run_fields: Dict[str, Any],
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Merge timing/flag fields into metadata["run"] without touching counters."""
        return await self.apply(run_id, {}, run_fields=run_fields, fields=fields)

    async def derive_row_counts(self, run_id: str) -> Dict[str, int]:
        """
        Row-status projection of the counters.

        Computed from row status rather than the metadata blob, so it is
        exact even when counter writes raced.
        """
        counts = await self._repository.count_rows_by_status(run_id)
        derived = {status.value: counts.get(status.value, 0) for status in RowStatus}
        derived["total"] = sum(derived.values())
        return derived
