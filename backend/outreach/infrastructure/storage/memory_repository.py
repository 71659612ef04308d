"""
In-Memory Run Repository
Process-local storage for development and tests (STORAGE_BACKEND=memory)
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypeVar

from pydantic import BaseModel

from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.call import Call
from outreach.domain.models.organization import CallDirection, Campaign, Organization
from outreach.domain.models.row import Row, RowStatus
from outreach.domain.models.run import Run, RunStatus

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

EPOCH_MIN = datetime.min.replace(tzinfo=timezone.utc)


def _updated(model: ModelT, fields: Dict[str, Any]) -> ModelT:
    """Validated copy of a model with fields applied."""
    data = model.model_dump()
    data.update(fields)
    return type(model).model_validate(data)


class InMemoryRunRepository(RunRepository):
    """
    Dict-backed repository.

    Returned models are copies, so callers never mutate stored state
    without going through an update method. Conditional row transitions
    are serialized with a lock.
    """

    def __init__(self):
        self.organizations: Dict[str, Organization] = {}
        self.campaigns: Dict[str, Campaign] = {}
        self.runs: Dict[str, Run] = {}
        self.rows: Dict[str, Row] = {}
        self.calls: Dict[str, Call] = {}
        self._row_lock = asyncio.Lock()

    @staticmethod
    def _copy(model: Optional[ModelT]) -> Optional[ModelT]:
        return model.model_copy(deep=True) if model is not None else None

    # Seeding (collaborator records are owned elsewhere)

    def add_organization(self, organization: Organization) -> Organization:
        self.organizations[organization.id] = organization
        return organization

    def add_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.id] = campaign
        return campaign

    # Organizations / campaigns

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        return self._copy(self.organizations.get(org_id))

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        return self._copy(self.campaigns.get(campaign_id))

    async def find_inbound_campaign(self, org_id: str) -> Optional[Campaign]:
        candidates = [
            c for c in self.campaigns.values()
            if c.org_id == org_id and c.direction == CallDirection.INBOUND.value
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda c: c.updated_at or EPOCH_MIN, reverse=True)
        return self._copy(candidates[0])

    # Runs

    async def get_run(self, run_id: str) -> Optional[Run]:
        return self._copy(self.runs.get(run_id))

    async def insert_run(self, run: Run) -> Run:
        self.runs[run.id] = run.model_copy(deep=True)
        return self._copy(run)

    async def update_run(self, run_id: str, fields: Dict[str, Any]) -> None:
        run = self.runs.get(run_id)
        if run is None:
            logger.warning(f"update_run: run not found {run_id}")
            return
        self.runs[run_id] = _updated(run, fields)

    async def list_runs(self, status: str, org_id: Optional[str] = None) -> List[Run]:
        return [
            self._copy(run) for run in self.runs.values()
            if run.status == status and (org_id is None or run.org_id == org_id)
        ]

    async def list_due_scheduled_runs(self, now: datetime) -> List[Run]:
        return [
            self._copy(run) for run in self.runs.values()
            if run.status == RunStatus.SCHEDULED.value
            and run.scheduled_at is not None
            and run.scheduled_at <= now
        ]

    # Rows

    async def insert_rows(self, rows: List[Row]) -> None:
        for row in rows:
            self.rows[row.id] = row.model_copy(deep=True)

    async def get_row(self, row_id: str) -> Optional[Row]:
        return self._copy(self.rows.get(row_id))

    async def select_pending_rows(self, run_id: str, limit: int) -> List[Row]:
        pending = [
            row for row in self.rows.values()
            if row.run_id == run_id and row.status == RowStatus.PENDING.value
        ]
        pending.sort(key=lambda row: (-row.priority, row.sort_index))
        return [self._copy(row) for row in pending[:limit]]

    async def transition_row(
        self,
        row_id: str,
        expected_status: str,
        fields: Dict[str, Any]
    ) -> Optional[Row]:
        async with self._row_lock:
            row = self.rows.get(row_id)
            if row is None or row.status != expected_status:
                return None
            self.rows[row_id] = _updated(row, fields)
            return self._copy(self.rows[row_id])

    async def update_row(self, row_id: str, fields: Dict[str, Any]) -> None:
        async with self._row_lock:
            row = self.rows.get(row_id)
            if row is None:
                logger.warning(f"update_row: row not found {row_id}")
                return
            self.rows[row_id] = _updated(row, fields)

    async def count_rows(self, run_id: str, statuses: List[str]) -> int:
        return sum(1 for row in self.rows.values() if row.run_id == run_id and row.status in statuses)

    async def count_rows_by_status(self, run_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self.rows.values():
            if row.run_id == run_id:
                counts[row.status] = counts.get(row.status, 0) + 1
        return counts

    async def count_org_rows(self, org_id: str, statuses: List[str]) -> int:
        return sum(1 for row in self.rows.values() if row.org_id == org_id and row.status in statuses)

    async def list_stale_calling_rows(self, older_than: datetime) -> List[Row]:
        return [
            self._copy(row) for row in self.rows.values()
            if row.status == RowStatus.CALLING.value
            and row.updated_at is not None
            and row.updated_at < older_than
        ]

    async def find_latest_row_by_phone(self, org_id: str, phone: str) -> Optional[Row]:
        matches = [row for row in self.rows.values() if row.org_id == org_id and row.phone == phone]
        if not matches:
            return None
        matches.sort(key=lambda row: row.created_at or EPOCH_MIN, reverse=True)
        return self._copy(matches[0])

    # Calls

    async def insert_call(self, call: Call) -> Call:
        self.calls[call.id] = call.model_copy(deep=True)
        return self._copy(call)

    async def get_call(self, call_id: str) -> Optional[Call]:
        return self._copy(self.calls.get(call_id))

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        for call in self.calls.values():
            if call.provider_call_id == provider_call_id:
                return self._copy(call)
        return None

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        call = self.calls.get(call_id)
        if call is None:
            logger.warning(f"update_call: call not found {call_id}")
            return
        self.calls[call_id] = _updated(call, fields)
