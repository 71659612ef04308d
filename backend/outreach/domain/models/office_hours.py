"""
Office Hours Model
Organization weekly calling windows and the within-hours check
"""
import logging
from pydantic import BaseModel, Field
from typing import Dict, Optional, Any
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)


WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

# Sentinel windows (minutes since midnight)
CLOSED_ALL_DAY = (0, 0)
OPEN_ALL_DAY = (0, 23 * 60 + 59)


class DayHours(BaseModel):
    """Calling window for a single weekday (24h HH:MM)."""
    start: str = Field(default="09:00", description="Window start (HH:MM)")
    end: str = Field(default="17:00", description="Window end (HH:MM)")


class OfficeHoursCheck(BaseModel):
    """Result of an office-hours evaluation."""
    is_within_hours: bool
    reason: str
    configured: bool = True
    weekday: Optional[str] = None
    local_time: Optional[str] = None
    timezone: Optional[str] = None


def parse_minutes(value: str) -> int:
    """
    Convert an HH:MM string into minutes since midnight.

    Raises:
        ValueError: If the value is not a valid 24h time
    """
    hour_str, minute_str = value.strip().split(":")[:2]
    hour, minute = int(hour_str), int(minute_str)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time out of range: {value}")
    return hour * 60 + minute


def _resolve_day(office_hours: Dict[str, Any], weekday: str) -> Optional[DayHours]:
    for key, value in office_hours.items():
        if key.lower() != weekday:
            continue
        if value is None:
            return None
        if isinstance(value, DayHours):
            return value
        if isinstance(value, dict) and value.get("start") is not None and value.get("end") is not None:
            return DayHours(start=str(value["start"]), end=str(value["end"]))
        return None
    return None


def evaluate_office_hours(
    timezone: Optional[str],
    office_hours: Optional[Dict[str, Any]],
    check_time: Optional[datetime] = None
) -> OfficeHoursCheck:
    """
    Check whether a timestamp falls inside an organization's calling window.

    Special windows are evaluated before the normal comparison:
    00:00-00:00 means closed all day, 00:00-23:59 means open all day.
    Otherwise both ends are inclusive.

    Args:
        timezone: IANA timezone of the organization
        office_hours: Weekday name -> {start, end} (or None for closed days)
        check_time: Time to check (default: now). Naive values are read as local time.

    Returns:
        OfficeHoursCheck with the decision and a reason
    """
    if not timezone or not office_hours:
        return OfficeHoursCheck(
            is_within_hours=False,
            reason="office_hours_not_configured",
            configured=False,
            timezone=timezone,
        )

    try:
        tz = pytz.timezone(timezone)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{timezone}', evaluating office hours in UTC")
        tz = pytz.UTC

    if check_time is None:
        local = datetime.now(tz)
    elif check_time.tzinfo is None:
        local = tz.localize(check_time)
    else:
        local = check_time.astimezone(tz)

    weekday = WEEKDAY_NAMES[local.weekday()]
    now_minutes = local.hour * 60 + local.minute
    result = dict(weekday=weekday, local_time=local.strftime("%H:%M"), timezone=timezone)

    day = _resolve_day(office_hours, weekday)
    if day is None:
        return OfficeHoursCheck(is_within_hours=False, reason=f"no_hours_configured_for_{weekday}", **result)

    try:
        start_minutes = parse_minutes(day.start)
        end_minutes = parse_minutes(day.end)
    except ValueError:
        return OfficeHoursCheck(is_within_hours=False, reason=f"invalid_hours_for_{weekday}", **result)

    if (start_minutes, end_minutes) == CLOSED_ALL_DAY:
        return OfficeHoursCheck(is_within_hours=False, reason="closed_all_day", **result)

    if (start_minutes, end_minutes) == OPEN_ALL_DAY:
        return OfficeHoursCheck(is_within_hours=True, reason="open_24_hours", **result)

    if start_minutes <= now_minutes <= end_minutes:
        return OfficeHoursCheck(is_within_hours=True, reason="within_office_hours", **result)

    return OfficeHoursCheck(
        is_within_hours=False,
        reason=f"outside_office_hours_{day.start}_{day.end}",
        **result
    )
