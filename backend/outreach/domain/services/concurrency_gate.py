"""
Concurrency Gate
Determines how many new calls an organization may place right now
"""
import logging
from typing import Optional, Tuple

from outreach.core.config import DispatchSettings
from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.organization import Organization
from outreach.domain.models.row import RowStatus

logger = logging.getLogger(__name__)


def compute_available_slots(
    concurrent_call_limit: Optional[int],
    active_count: int,
    default_limit: int = 20
) -> int:
    """
    Free call slots for a limit and an in-flight count.

    Never negative; zero means do not dispatch.
    """
    limit = default_limit if concurrent_call_limit is None else concurrent_call_limit
    return max(0, limit - max(0, active_count))


class ConcurrencyGate:
    """
    Evaluates an organization's concurrent-call budget.

    The budget is shared by every run of the organization: in-flight calls
    are the organization's rows currently in 'calling', whichever run they
    belong to.
    """

    def __init__(self, repository: RunRepository, settings: Optional[DispatchSettings] = None):
        self._repository = repository
        self._settings = settings or DispatchSettings()

    async def get_active_call_count(self, org_id: str) -> int:
        """Rows currently in 'calling' across the organization."""
        return await self._repository.count_org_rows(org_id, [RowStatus.CALLING.value])

    async def available_slots(self, organization: Organization) -> Tuple[int, str]:
        """
        Compute free slots for an organization.

        Returns:
            (available_slots, reason)
        """
        limit = organization.concurrent_call_limit
        if limit is None:
            limit = self._settings.default_concurrent_call_limit

        active = await self.get_active_call_count(organization.id)
        slots = compute_available_slots(limit, active, self._settings.default_concurrent_call_limit)

        if slots == 0:
            reason = f"max_concurrent_calls_reached_{active}/{limit}"
            logger.debug(f"Concurrent limit reached for org {organization.id}: {reason}")
            return 0, reason

        return slots, f"slots_available_{slots}/{limit}"
