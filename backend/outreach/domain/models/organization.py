"""
Organization and Campaign Models
Collaborator records consumed (not owned) by run orchestration
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from outreach.domain.models.office_hours import OfficeHoursCheck, evaluate_office_hours


DEFAULT_CONCURRENT_CALL_LIMIT = 20


class CallDirection(str, Enum):
    """Direction of a call or campaign"""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Organization(BaseModel):
    """
    Organization settings that drive dispatch.

    office_hours is keyed by lowercase weekday name; a None value marks a closed day.
    """
    id: str
    name: Optional[str] = None
    phone: Optional[str] = Field(default=None, description="Caller ID used as from-number")
    timezone: Optional[str] = Field(default="America/New_York")
    office_hours: Optional[Dict[str, Optional[Dict[str, str]]]] = None
    concurrent_call_limit: Optional[int] = Field(default=DEFAULT_CONCURRENT_CALL_LIMIT, ge=0)

    def is_within_office_hours(self, check_time: Optional[datetime] = None) -> OfficeHoursCheck:
        """Evaluate this organization's calling window."""
        return evaluate_office_hours(self.timezone, self.office_hours, check_time)

    @property
    def effective_call_limit(self) -> int:
        if self.concurrent_call_limit is None:
            return DEFAULT_CONCURRENT_CALL_LIMIT
        return self.concurrent_call_limit


class Campaign(BaseModel):
    """Campaign template: voice agent plus the base prompt and voicemail text."""
    id: str
    org_id: str
    name: str = ""
    agent_id: Optional[str] = None
    direction: CallDirection = CallDirection.OUTBOUND
    base_prompt: Optional[str] = None
    voicemail_message: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    model_config = {"use_enum_values": True}
