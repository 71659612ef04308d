"""
Run Model
A single execution batch of a campaign over a list of patient rows
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum
import copy


class RunStatus(str, Enum):
    """Status of a run"""
    DRAFT = "draft"
    PROCESSING = "processing"
    READY = "ready"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_RUN_STATUSES = {RunStatus.COMPLETED.value, RunStatus.FAILED.value}

# Statuses from which a run may be started (or resumed)
STARTABLE_RUN_STATUSES = {
    RunStatus.DRAFT.value,
    RunStatus.READY.value,
    RunStatus.PAUSED.value,
    RunStatus.SCHEDULED.value,
}

CALL_COUNTER_KEYS = (
    "total", "completed", "failed", "calling", "pending",
    "skipped", "voicemail", "connected", "converted",
)


def default_run_metadata(
    calls_per_minute: Optional[int] = None,
    batch_size: Optional[int] = None,
    scheduled_time: Optional[str] = None
) -> Dict[str, Any]:
    """Seed metadata for a new run."""
    return {
        "rows": {"total": 0, "invalid": 0},
        "calls": {key: 0 for key in CALL_COUNTER_KEYS},
        "run": {
            "startTime": None,
            "endTime": None,
            "duration": None,
            "lastPausedAt": None,
            "scheduledTime": scheduled_time,
            "callsPerMinute": calls_per_minute,
            "batchSize": batch_size,
            "pausedOutsideHours": False,
            "lastCallTime": None,
        },
    }


class Run(BaseModel):
    """
    Campaign run.

    Counters and timing live in the nested metadata blob
    (rows.*, calls.*, run.*) rather than in columns.
    """
    id: str
    org_id: str
    campaign_id: str
    name: str
    custom_prompt: Optional[str] = None
    custom_voicemail_message: Optional[str] = None
    status: RunStatus = Field(default=RunStatus.DRAFT)
    metadata: Dict[str, Any] = Field(default_factory=default_run_metadata)
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def run_info(self) -> Dict[str, Any]:
        return self.metadata.get("run") or {}

    def get_counter(self, path: str) -> int:
        """Read a counter by dot path, e.g. 'calls.calling' (missing -> 0)."""
        node: Any = self.metadata
        for key in path.split("."):
            if not isinstance(node, dict) or key not in node:
                return 0
            node = node[key]
        return node if isinstance(node, (int, float)) else 0

    def copy_metadata(self) -> Dict[str, Any]:
        return copy.deepcopy(self.metadata or {})
