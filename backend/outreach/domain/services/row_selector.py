"""
Row Selector
Picks the next pending rows of a run in dispatch order
"""
import logging
from typing import List

from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.row import Row, RowStatus

logger = logging.getLogger(__name__)


class RowSelector:
    """Read-only selection of dispatchable rows."""

    def __init__(self, repository: RunRepository):
        self._repository = repository

    async def select(self, run_id: str, available_slots: int) -> List[Row]:
        """
        Return up to available_slots pending rows of a run.

        Rows are ordered by priority (highest first) and then by
        ascending sort_index, so equal-priority rows go in ingestion order.
        """
        if available_slots <= 0:
            return []

        rows = await self._repository.select_pending_rows(run_id, available_slots)
        # Guard against a backend that ignores the status filter or limit
        selected = [row for row in rows if row.status == RowStatus.PENDING.value][:available_slots]

        logger.debug(f"Selected {len(selected)} pending rows for run {run_id} (slots={available_slots})")
        return selected
