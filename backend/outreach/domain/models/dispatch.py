"""
Dispatch Result Models
Outcomes of single-row dispatch and of a full dispatch cycle
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum


class DispatchOutcome(str, Enum):
    """Result of dispatching a single row"""
    DISPATCHED = "dispatched"
    FAILED = "failed"
    SKIPPED = "skipped"      # Row was acquired by another cycle


class CycleStatus(str, Enum):
    """Result of a dispatch cycle"""
    DISPATCHED = "dispatched"
    NOT_RUNNING = "not_running"
    OUTSIDE_HOURS = "outside_hours"
    AT_LIMIT = "at_limit"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERROR = "error"


class RowDispatchResult(BaseModel):
    """Outcome of dispatching one row."""
    row_id: str
    outcome: DispatchOutcome
    provider_call_id: Optional[str] = None
    call_id: Optional[str] = None
    error: Optional[str] = None

    model_config = {"use_enum_values": True}


class DispatchError(BaseModel):
    """Per-row dispatch failure reported back to the caller."""
    row_id: str
    error: str


class CycleResult(BaseModel):
    """Summary of one dispatch cycle for a run."""
    run_id: str
    status: CycleStatus
    message: str = ""
    available_slots: int = 0
    dispatched: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[DispatchError] = Field(default_factory=list)

    model_config = {"use_enum_values": True}
