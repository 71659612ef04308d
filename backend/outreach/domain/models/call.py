"""
Call Model
Audit record for one placed phone call, 1:1 with a provider call id
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from outreach.domain.models.organization import CallDirection


class CallStatus(str, Enum):
    """Status of a call"""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    VOICEMAIL = "voicemail"
    NO_ANSWER = "no-answer"


class ResolutionStatus(str, Enum):
    """Whether the outreach attempt behind a row achieved its purpose"""
    OPEN = "open"
    RESOLVED = "resolved"


TERMINAL_CALL_STATUSES = {
    CallStatus.COMPLETED.value,
    CallStatus.FAILED.value,
    CallStatus.VOICEMAIL.value,
    CallStatus.NO_ANSWER.value,
}


class Call(BaseModel):
    """Phone call placed through the voice provider."""
    id: str
    org_id: str
    run_id: Optional[str] = None
    row_id: Optional[str] = None
    campaign_id: Optional[str] = None
    patient_id: Optional[str] = None
    agent_id: Optional[str] = None
    direction: CallDirection = CallDirection.OUTBOUND
    status: CallStatus = CallStatus.PENDING
    provider_call_id: Optional[str] = None
    recording_url: Optional[str] = None
    to_number: Optional[str] = None
    from_number: Optional[str] = None
    transcript: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = Field(default=None, description="Seconds")
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CALL_STATUSES
