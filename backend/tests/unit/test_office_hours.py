"""
Unit Tests for Office Hours
Weekly calling windows evaluated in the organization's timezone
"""
import logging
import pytest
from datetime import datetime, timezone

from outreach.domain.models.office_hours import DayHours, evaluate_office_hours, parse_minutes
from outreach.domain.models.organization import Organization


WEEKDAYS = {
    "monday": {"start": "09:00", "end": "17:00"},
    "tuesday": {"start": "09:00", "end": "17:00"},
    "wednesday": {"start": "09:00", "end": "17:00"},
    "thursday": {"start": "09:00", "end": "17:00"},
    "friday": {"start": "09:00", "end": "17:00"},
    "saturday": None,
}

# 2024-01-15 is a Monday
MONDAY = datetime(2024, 1, 15)


class TestParseMinutes:
    """Tests for HH:MM parsing"""

    def test_valid_times(self):
        assert parse_minutes("00:00") == 0
        assert parse_minutes("09:30") == 570
        assert parse_minutes("23:59") == 1439

    @pytest.mark.parametrize("value", ["24:00", "12:60", "9am", "", "abc:de"])
    def test_invalid_times_raise(self, value):
        with pytest.raises(ValueError):
            parse_minutes(value)


class TestEvaluateOfficeHours:
    """Tests for the within-hours decision"""

    def test_window_ends_are_inclusive(self):
        """Both 09:00 and 17:00 are inside a 09:00-17:00 window"""
        start = evaluate_office_hours("America/New_York", WEEKDAYS, MONDAY.replace(hour=9, minute=0))
        end = evaluate_office_hours("America/New_York", WEEKDAYS, MONDAY.replace(hour=17, minute=0))

        assert start.is_within_hours is True
        assert start.reason == "within_office_hours"
        assert end.is_within_hours is True

    def test_just_outside_window(self):
        before = evaluate_office_hours("America/New_York", WEEKDAYS, MONDAY.replace(hour=8, minute=59))
        after = evaluate_office_hours("America/New_York", WEEKDAYS, MONDAY.replace(hour=17, minute=1))

        assert before.is_within_hours is False
        assert before.reason == "outside_office_hours_09:00_17:00"
        assert after.is_within_hours is False

    def test_aware_time_converted_to_org_timezone(self):
        """14:00 UTC is 09:00 in New York in January"""
        check = evaluate_office_hours(
            "America/New_York", WEEKDAYS, datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)
        )

        assert check.is_within_hours is True
        assert check.weekday == "monday"
        assert check.local_time == "09:00"

    def test_daylight_saving_offset(self):
        """13:00 UTC is 09:00 EDT in July"""
        check = evaluate_office_hours(
            "America/New_York", WEEKDAYS, datetime(2024, 7, 15, 13, 0, tzinfo=timezone.utc)
        )

        assert check.is_within_hours is True

    def test_weekday_shift_across_midnight(self):
        """02:00 UTC Tuesday is still Monday evening in New York"""
        check = evaluate_office_hours(
            "America/New_York", WEEKDAYS, datetime(2024, 1, 16, 2, 0, tzinfo=timezone.utc)
        )

        assert check.weekday == "monday"
        assert check.is_within_hours is False

    def test_closed_all_day_sentinel(self):
        hours = {"monday": {"start": "00:00", "end": "00:00"}}
        check = evaluate_office_hours("America/New_York", hours, MONDAY.replace(hour=0, minute=0))

        assert check.is_within_hours is False
        assert check.reason == "closed_all_day"

    def test_open_all_day_sentinel(self):
        hours = {"monday": {"start": "00:00", "end": "23:59"}}

        for hour in (0, 3, 12, 23):
            check = evaluate_office_hours("America/New_York", hours, MONDAY.replace(hour=hour))
            assert check.is_within_hours is True
            assert check.reason == "open_24_hours"

    def test_missing_day_is_closed(self):
        sunday = datetime(2024, 1, 21, 12, 0)
        check = evaluate_office_hours("America/New_York", WEEKDAYS, sunday)

        assert check.is_within_hours is False
        assert check.reason == "no_hours_configured_for_sunday"

    def test_null_day_is_closed(self):
        saturday = datetime(2024, 1, 20, 12, 0)
        check = evaluate_office_hours("America/New_York", WEEKDAYS, saturday)

        assert check.is_within_hours is False
        assert check.reason == "no_hours_configured_for_saturday"

    def test_invalid_hours_are_closed(self):
        hours = {"monday": {"start": "9am", "end": "5pm"}}
        check = evaluate_office_hours("America/New_York", hours, MONDAY.replace(hour=12))

        assert check.is_within_hours is False
        assert check.reason == "invalid_hours_for_monday"

    def test_day_keys_are_case_insensitive(self):
        hours = {"Monday": {"start": "09:00", "end": "17:00"}}
        check = evaluate_office_hours("America/New_York", hours, MONDAY.replace(hour=12))

        assert check.is_within_hours is True

    def test_day_hours_model_accepted(self):
        hours = {"monday": DayHours(start="08:00", end="10:00")}
        check = evaluate_office_hours("America/New_York", hours, MONDAY.replace(hour=8, minute=30))

        assert check.is_within_hours is True

    def test_unconfigured_hours(self):
        for timezone_name, hours in (("America/New_York", None), ("America/New_York", {}), (None, WEEKDAYS)):
            check = evaluate_office_hours(timezone_name, hours, MONDAY.replace(hour=12))
            assert check.configured is False
            assert check.reason == "office_hours_not_configured"

    def test_unknown_timezone_falls_back_to_utc(self):
        check = evaluate_office_hours(
            "Mars/Olympus_Mons", WEEKDAYS, datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)
        )

        assert check.is_within_hours is True
        assert check.local_time == "09:30"

    def test_unknown_timezone_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="outreach.domain.models.office_hours"):
            evaluate_office_hours("Mars/Olympus_Mons", WEEKDAYS, datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc))

        assert "Unknown timezone 'Mars/Olympus_Mons'" in caplog.text


class TestOrganizationOfficeHours:
    """Tests for Organization helpers"""

    def test_organization_delegates_to_evaluator(self):
        org = Organization(id="org", timezone="America/Chicago", office_hours=WEEKDAYS)

        # 15:30 UTC is 09:30 in Chicago in January
        check = org.is_within_office_hours(datetime(2024, 1, 15, 15, 30, tzinfo=timezone.utc))

        assert check.is_within_hours is True
        assert check.timezone == "America/Chicago"

    def test_effective_call_limit_defaults(self):
        assert Organization(id="org").effective_call_limit == 20
        assert Organization(id="org", concurrent_call_limit=None).effective_call_limit == 20
        assert Organization(id="org", concurrent_call_limit=0).effective_call_limit == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
