"""
Run Repository Interface
Abstract persistence for organizations, campaigns, runs, rows and calls
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from outreach.domain.models.organization import Organization, Campaign
from outreach.domain.models.run import Run
from outreach.domain.models.row import Row, RowStatus
from outreach.domain.models.call import Call
from outreach.utils.time_utils import utc_now


class RunRepository(ABC):
    """Storage operations used by the dispatch and webhook services"""

    # Organizations / campaigns (read-only collaborators)

    @abstractmethod
    async def get_organization(self, org_id: str) -> Optional[Organization]:
        pass

    @abstractmethod
    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    async def find_inbound_campaign(self, org_id: str) -> Optional[Campaign]:
        """Most recently updated inbound campaign of an organization."""
        pass

    # Runs

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[Run]:
        pass

    @abstractmethod
    async def insert_run(self, run: Run) -> Run:
        pass

    @abstractmethod
    async def update_run(self, run_id: str, fields: Dict[str, Any]) -> None:
        """Update run columns (status, metadata, scheduled_at...)."""
        pass

    @abstractmethod
    async def list_runs(self, status: str, org_id: Optional[str] = None) -> List[Run]:
        pass

    @abstractmethod
    async def list_due_scheduled_runs(self, now: datetime) -> List[Run]:
        """Runs in 'scheduled' status whose scheduled_at is at or before now."""
        pass

    # Rows

    @abstractmethod
    async def insert_rows(self, rows: List[Row]) -> None:
        pass

    @abstractmethod
    async def get_row(self, row_id: str) -> Optional[Row]:
        pass

    @abstractmethod
    async def select_pending_rows(self, run_id: str, limit: int) -> List[Row]:
        """
        Pending rows of a run in dispatch order.

        Ordered by priority descending, then sort_index ascending.
        """
        pass

    @abstractmethod
    async def transition_row(
        self,
        row_id: str,
        expected_status: str,
        fields: Dict[str, Any]
    ) -> Optional[Row]:
        """
        Conditional update: apply fields only if the row is in expected_status.

        Returns:
            The updated row, or None if the row was not in expected_status
        """
        pass

    async def acquire_row(self, row_id: str) -> Optional[Row]:
        """
        Claim a pending row for dispatch (pending -> calling).

        Returns:
            The claimed row, or None if another caller already took it
        """
        row = await self.transition_row(row_id, RowStatus.PENDING.value, {
            "status": RowStatus.CALLING.value,
            "updated_at": utc_now(),
        })
        if row is None:
            return None

        # The row is owned by this caller now, so a plain update is safe
        row.call_attempts += 1
        await self.update_row(row_id, {"call_attempts": row.call_attempts})
        return row

    @abstractmethod
    async def update_row(self, row_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def count_rows(self, run_id: str, statuses: List[str]) -> int:
        pass

    @abstractmethod
    async def count_rows_by_status(self, run_id: str) -> Dict[str, int]:
        pass

    @abstractmethod
    async def count_org_rows(self, org_id: str, statuses: List[str]) -> int:
        """Rows in the given statuses across every run of an organization."""
        pass

    @abstractmethod
    async def list_stale_calling_rows(self, older_than: datetime) -> List[Row]:
        """Rows still 'calling' whose last update is before older_than."""
        pass

    @abstractmethod
    async def find_latest_row_by_phone(self, org_id: str, phone: str) -> Optional[Row]:
        pass

    # Calls

    @abstractmethod
    async def insert_call(self, call: Call) -> Call:
        pass

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        pass
