"""Domain models"""

from .office_hours import DayHours, OfficeHoursCheck, evaluate_office_hours
from .organization import Organization, Campaign, CallDirection
from .run import Run, RunStatus, default_run_metadata
from .row import Row, RowStatus
from .call import Call, CallStatus, ResolutionStatus
from .org_context import OrgContext
from .dispatch import (
    DispatchOutcome,
    CycleStatus,
    RowDispatchResult,
    DispatchError,
    CycleResult,
)

__all__ = [
    "DayHours",
    "OfficeHoursCheck",
    "evaluate_office_hours",
    "Organization",
    "Campaign",
    "CallDirection",
    "Run",
    "RunStatus",
    "default_run_metadata",
    "Row",
    "RowStatus",
    "Call",
    "CallStatus",
    "ResolutionStatus",
    "OrgContext",
    "DispatchOutcome",
    "CycleStatus",
    "RowDispatchResult",
    "DispatchError",
    "CycleResult",
]
