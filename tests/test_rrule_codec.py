"""Tests for familyhub.core.rrule_codec — RRULE strings and summaries."""

import pytest
from datetime import date, datetime

from familyhub.core.rrule_codec import from_rrule, get_rrule_summary, to_rrule, validate_rrule
from familyhub.core.rules import PRESETS, RecurrenceValidationError, create_rule_from_preset
from familyhub.data.models import RecurrenceRule


# ---------------------------------------------------------------------------
# to_rrule
# ---------------------------------------------------------------------------


class TestToRrule:
    def test_weekly_orders_weekdays(self):
        rule = RecurrenceRule(frequency="weekly", interval=2, weekdays=["wednesday", "monday"])
        assert to_rrule(rule, date(2024, 1, 1)) == (
            "DTSTART:20240101T000000\nRRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE"
        )

    def test_keeps_start_time(self):
        rule = RecurrenceRule(frequency="daily")
        assert to_rrule(rule, datetime(2024, 1, 1, 18, 30)).startswith("DTSTART:20240101T183000\n")

    def test_monthly_ordinal_weekday(self):
        rule = RecurrenceRule(
            frequency="monthly", monthly_type="on_weekday",
            weekday_ordinal="last", weekday_name="friday",
        )
        assert to_rrule(rule, date(2024, 1, 26)).endswith("FREQ=MONTHLY;INTERVAL=1;BYDAY=-1FR")

    def test_monthly_day(self):
        rule = RecurrenceRule(frequency="monthly", monthly_type="on_day", month_day=15)
        assert "BYMONTHDAY=15" in to_rrule(rule, date(2024, 1, 15))

    def test_until_covers_the_whole_end_day(self):
        rule = RecurrenceRule(end_type="on_date", end_date=date(2024, 3, 5))
        assert to_rrule(rule, date(2024, 1, 1)).endswith(";UNTIL=20240305T235959")

    def test_all_day_uses_date_values(self):
        rule = RecurrenceRule(end_type="on_date", end_date=date(2024, 1, 5))
        encoded = to_rrule(rule, datetime(2024, 1, 2), all_day=True)
        assert encoded == "DTSTART;VALUE=DATE:20240102\nRRULE:FREQ=DAILY;INTERVAL=1;UNTIL=20240105"
        assert validate_rrule(encoded) == (True, None)
        assert from_rrule(encoded).end_date == date(2024, 1, 5)

    def test_count(self):
        rule = RecurrenceRule(end_type="after_count", end_count=10)
        assert to_rrule(rule, date(2024, 1, 1)).endswith(";COUNT=10")

    def test_never_has_no_end(self):
        encoded = to_rrule(RecurrenceRule(), date(2024, 1, 1))
        assert "UNTIL" not in encoded
        assert "COUNT" not in encoded

    def test_output_parses_with_dateutil(self):
        rule = RecurrenceRule(frequency="weekly", weekdays=["monday", "friday"], end_type="after_count", end_count=4)
        assert validate_rrule(to_rrule(rule, date(2024, 1, 1))) == (True, None)


# ---------------------------------------------------------------------------
# from_rrule / validate_rrule
# ---------------------------------------------------------------------------


class TestFromRrule:
    def test_inverse_of_to_rrule(self):
        rule = RecurrenceRule(
            frequency="monthly", interval=2, monthly_type="on_weekday",
            weekday_ordinal="second", weekday_name="tuesday",
            end_type="on_date", end_date=date(2024, 12, 31),
        )
        assert from_rrule(to_rrule(rule, date(2024, 1, 9))) == rule

    def test_bare_rrule_line(self):
        rule = from_rrule("RRULE:FREQ=WEEKLY;BYDAY=SA,SU;COUNT=6")
        assert rule.weekdays == ["saturday", "sunday"]
        assert rule.end_count == 6

    def test_missing_freq(self):
        with pytest.raises(RecurrenceValidationError):
            from_rrule("INTERVAL=2")

    def test_bad_weekday(self):
        with pytest.raises(RecurrenceValidationError):
            from_rrule("FREQ=WEEKLY;BYDAY=XX")

    def test_validate_rrule_rejects_garbage(self):
        ok, error = validate_rrule("RRULE:FREQ=SOMETIMES")
        assert ok is False
        assert error


# ---------------------------------------------------------------------------
# get_rrule_summary
# ---------------------------------------------------------------------------


class TestSummary:
    def test_every_two_weeks_on_days(self):
        rule = RecurrenceRule(frequency="weekly", interval=2, weekdays=["monday", "wednesday"])
        assert get_rrule_summary(to_rrule(rule, date(2024, 1, 1))) == "Every 2 weeks on Mon, Wed"

    def test_last_friday(self):
        assert get_rrule_summary("RRULE:FREQ=MONTHLY;BYDAY=-1FR") == "Monthly on the last Friday"

    def test_count(self):
        assert get_rrule_summary("RRULE:FREQ=DAILY;COUNT=10") == "Daily, 10 times"
        assert get_rrule_summary("RRULE:FREQ=DAILY;COUNT=1") == "Daily, once"

    def test_weekday_and_weekend_names(self):
        assert get_rrule_summary("RRULE:FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR") == "Weekly on weekdays"
        assert get_rrule_summary("RRULE:FREQ=WEEKLY;BYDAY=SA,SU") == "Weekly on weekends"

    def test_month_day(self):
        assert get_rrule_summary("RRULE:FREQ=MONTHLY;BYMONTHDAY=15") == "Monthly on day 15"

    def test_until(self):
        assert get_rrule_summary("RRULE:FREQ=YEARLY;UNTIL=20250305T235959") == "Yearly, until Mar 5, 2025"

    def test_incomplete_ordinal_degrades(self):
        assert get_rrule_summary("RRULE:FREQ=MONTHLY;INTERVAL=3;BYDAY=9XX") == "Every 3 months"

    def test_invalid(self):
        assert get_rrule_summary("") == "Invalid recurrence rule"
        assert get_rrule_summary("hello") == "Invalid recurrence rule"

    @pytest.mark.parametrize("preset,keyword", [
        ("every_day", "daily"),
        ("school_days", "week"),
        ("every_week", "week"),
        ("every_month", "month"),
        ("every_year", "year"),
    ])
    def test_presets_mention_their_frequency(self, preset, keyword):
        start = date(2024, 1, 17)
        summary = get_rrule_summary(to_rrule(create_rule_from_preset(preset, start), start))
        assert keyword in summary.lower()

    def test_all_presets_summarize(self):
        for preset in PRESETS:
            rule = create_rule_from_preset(preset, date(2024, 1, 1))
            assert get_rrule_summary(to_rrule(rule, date(2024, 1, 1))) != "Invalid recurrence rule"
