"""
Row Model
One patient-call unit within a run
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum


class RowStatus(str, Enum):
    """Status of a row"""
    PENDING = "pending"
    CALLING = "calling"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Rows that keep a run open
OPEN_ROW_STATUSES = [RowStatus.PENDING.value, RowStatus.CALLING.value]

PHONE_VARIABLE_KEYS = ("phone", "primaryPhone")


class Row(BaseModel):
    """
    A row of patient data queued for a call.

    variables is a free-form map taken from the uploaded list; its keys
    differ per campaign.
    """
    id: str
    run_id: str
    org_id: str
    campaign_id: Optional[str] = None
    patient_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    processed_variables: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, Any]] = None
    post_call_data: Optional[Dict[str, Any]] = None
    status: RowStatus = Field(default=RowStatus.PENDING)
    error: Optional[str] = None
    provider_call_id: Optional[str] = None
    sort_index: int = 0
    priority: int = 0
    retry_count: int = 0
    call_attempts: int = 0
    batch_eligible: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def phone(self) -> Optional[str]:
        """Destination number from the row variables, if any."""
        for key in PHONE_VARIABLE_KEYS:
            value = self.variables.get(key)
            if value is not None and str(value).strip():
                return str(value).strip()
        return None
