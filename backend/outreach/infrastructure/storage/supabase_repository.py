"""
Supabase Run Repository
Persists organizations, campaigns, runs, rows and calls in Supabase (Postgres)

Tables: organizations, campaigns, runs, rows, calls. Column names match
the model field names; run counters live in the runs.metadata jsonb column.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from supabase import Client

from outreach.domain.interfaces.run_repository import RunRepository
from outreach.domain.models.call import Call
from outreach.domain.models.organization import CallDirection, Campaign, Organization
from outreach.domain.models.row import Row, RowStatus
from outreach.domain.models.run import Run, RunStatus

logger = logging.getLogger(__name__)


def _to_db(value: Any) -> Any:
    """Convert datetimes/enums (also nested) into JSON-safe column values."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _to_db(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_db(item) for item in value]
    return value


class SupabaseRunRepository(RunRepository):
    """RunRepository backed by the Supabase PostgREST client."""

    ORGANIZATIONS = "organizations"
    CAMPAIGNS = "campaigns"
    RUNS = "runs"
    ROWS = "rows"
    CALLS = "calls"

    def __init__(self, supabase: Client):
        self._supabase = supabase

    def _table(self, name: str):
        return self._supabase.table(name)

    def _fetch_one(self, table: str, column: str, value: str) -> Optional[Dict[str, Any]]:
        response = self._table(table).select("*").eq(column, value).limit(1).execute()
        return response.data[0] if response.data else None

    # Organizations / campaigns

    async def get_organization(self, org_id: str) -> Optional[Organization]:
        data = self._fetch_one(self.ORGANIZATIONS, "id", org_id)
        return Organization.model_validate(data) if data else None

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        data = self._fetch_one(self.CAMPAIGNS, "id", campaign_id)
        return Campaign.model_validate(data) if data else None

    async def find_inbound_campaign(self, org_id: str) -> Optional[Campaign]:
        response = self._table(self.CAMPAIGNS).select("*")\
            .eq("org_id", org_id)\
            .eq("direction", CallDirection.INBOUND.value)\
            .order("updated_at", desc=True)\
            .limit(1)\
            .execute()
        return Campaign.model_validate(response.data[0]) if response.data else None

    # Runs

    async def get_run(self, run_id: str) -> Optional[Run]:
        data = self._fetch_one(self.RUNS, "id", run_id)
        return Run.model_validate(data) if data else None

    async def insert_run(self, run: Run) -> Run:
        response = self._table(self.RUNS).insert(run.model_dump(mode="json")).execute()
        return Run.model_validate(response.data[0]) if response.data else run

    async def update_run(self, run_id: str, fields: Dict[str, Any]) -> None:
        self._table(self.RUNS).update(_to_db(fields)).eq("id", run_id).execute()

    async def list_runs(self, status: str, org_id: Optional[str] = None) -> List[Run]:
        query = self._table(self.RUNS).select("*").eq("status", status)
        if org_id:
            query = query.eq("org_id", org_id)
        response = query.order("created_at").execute()
        return [Run.model_validate(item) for item in response.data or []]

    async def list_due_scheduled_runs(self, now: datetime) -> List[Run]:
        response = self._table(self.RUNS).select("*")\
            .eq("status", RunStatus.SCHEDULED.value)\
            .lte("scheduled_at", now.isoformat())\
            .execute()
        return [Run.model_validate(item) for item in response.data or []]

    # Rows

    async def insert_rows(self, rows: List[Row]) -> None:
        if not rows:
            return
        self._table(self.ROWS).insert([row.model_dump(mode="json") for row in rows]).execute()

    async def get_row(self, row_id: str) -> Optional[Row]:
        data = self._fetch_one(self.ROWS, "id", row_id)
        return Row.model_validate(data) if data else None

    async def select_pending_rows(self, run_id: str, limit: int) -> List[Row]:
        response = self._table(self.ROWS).select("*")\
            .eq("run_id", run_id)\
            .eq("status", RowStatus.PENDING.value)\
            .order("priority", desc=True)\
            .order("sort_index")\
            .limit(limit)\
            .execute()
        return [Row.model_validate(item) for item in response.data or []]

    async def transition_row(
        self,
        row_id: str,
        expected_status: str,
        fields: Dict[str, Any]
    ) -> Optional[Row]:
        # UPDATE rows SET ... WHERE id = ? AND status = ?; empty result means another writer won
        response = self._table(self.ROWS).update(_to_db(fields))\
            .eq("id", row_id)\
            .eq("status", expected_status)\
            .execute()
        if not response.data:
            return None
        return Row.model_validate(response.data[0])

    async def update_row(self, row_id: str, fields: Dict[str, Any]) -> None:
        self._table(self.ROWS).update(_to_db(fields)).eq("id", row_id).execute()

    async def count_rows(self, run_id: str, statuses: List[str]) -> int:
        response = self._table(self.ROWS).select("id", count="exact")\
            .eq("run_id", run_id)\
            .in_("status", statuses)\
            .execute()
        return response.count or 0

    async def count_rows_by_status(self, run_id: str) -> Dict[str, int]:
        response = self._table(self.ROWS).select("status").eq("run_id", run_id).execute()
        counts: Dict[str, int] = {}
        for item in response.data or []:
            counts[item["status"]] = counts.get(item["status"], 0) + 1
        return counts

    async def count_org_rows(self, org_id: str, statuses: List[str]) -> int:
        response = self._table(self.ROWS).select("id", count="exact")\
            .eq("org_id", org_id)\
            .in_("status", statuses)\
            .execute()
        return response.count or 0

    async def list_stale_calling_rows(self, older_than: datetime) -> List[Row]:
        response = self._table(self.ROWS).select("*")\
            .eq("status", RowStatus.CALLING.value)\
            .lt("updated_at", older_than.isoformat())\
            .execute()
        return [Row.model_validate(item) for item in response.data or []]

    async def find_latest_row_by_phone(self, org_id: str, phone: str) -> Optional[Row]:
        response = self._table(self.ROWS).select("*")\
            .eq("org_id", org_id)\
            .or_(f"variables->>phone.eq.{phone},variables->>primaryPhone.eq.{phone}")\
            .order("created_at", desc=True)\
            .limit(1)\
            .execute()
        return Row.model_validate(response.data[0]) if response.data else None

    # Calls

    async def insert_call(self, call: Call) -> Call:
        response = self._table(self.CALLS).insert(call.model_dump(mode="json")).execute()
        return Call.model_validate(response.data[0]) if response.data else call

    async def get_call(self, call_id: str) -> Optional[Call]:
        data = self._fetch_one(self.CALLS, "id", call_id)
        return Call.model_validate(data) if data else None

    async def get_call_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        data = self._fetch_one(self.CALLS, "provider_call_id", provider_call_id)
        return Call.model_validate(data) if data else None

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> None:
        self._table(self.CALLS).update(_to_db(fields)).eq("id", call_id).execute()
