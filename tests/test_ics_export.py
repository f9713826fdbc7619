"""Tests for familyhub.adapters.ics_export — iCalendar rendering."""

from datetime import date, datetime

from icalendar import Calendar

from familyhub.adapters.ics_export import series_to_ics
from familyhub.core.rrule_codec import to_rrule
from familyhub.data.models import EventSeries, RecurrenceRule, TaskSeries


def _event(**overrides):
    rule = overrides.pop("recurrence_rule", RecurrenceRule(frequency="weekly", weekdays=["monday", "wednesday"]))
    data = dict(
        id="e1",
        family_id="fam",
        title="Swim",
        recurrence_rule=rule,
        series_start=datetime(2024, 1, 1, 18, 0),
        duration_minutes=45,
        location="Pool",
    )
    data.update(overrides)
    data.setdefault("rrule", to_rrule(rule, data["series_start"]))
    return EventSeries(**data)


def _component(ics_text, name):
    cal = Calendar.from_ical(ics_text)
    return next(c for c in cal.walk() if c.name == name)


class TestEventExport:
    def test_basic_properties(self):
        text = series_to_ics(_event())
        vevent = _component(text, "VEVENT")
        assert str(vevent["uid"]) == "e1"
        assert str(vevent["summary"]) == "Swim"
        assert str(vevent["location"]) == "Pool"
        assert vevent.decoded("dtstart") == datetime(2024, 1, 1, 18, 0)
        assert vevent.decoded("dtend") == datetime(2024, 1, 1, 18, 45)

    def test_rrule_from_stored_string(self):
        vevent = _component(series_to_ics(_event()), "VEVENT")
        rrule = vevent["rrule"]
        assert rrule["FREQ"] == ["WEEKLY"]
        assert rrule["BYDAY"] == ["MO", "WE"]

    def test_until_and_count(self):
        rule = RecurrenceRule(frequency="daily", end_type="after_count", end_count=5)
        vevent = _component(series_to_ics(_event(recurrence_rule=rule)), "VEVENT")
        assert vevent["rrule"]["COUNT"] == [5]

    def test_exdates_written(self):
        text = series_to_ics(_event(exdates=[date(2024, 1, 8), date(2024, 1, 3)]))
        assert "EXDATE" in text
        assert "20240103T180000" in text
        assert "20240108T180000" in text

    def test_all_day_uses_dates(self):
        text = series_to_ics(_event(is_all_day=True, exdates=[date(2024, 1, 8)]))
        vevent = _component(text, "VEVENT")
        assert vevent.decoded("dtstart") == date(2024, 1, 1)
        assert vevent.decoded("dtend") == date(2024, 1, 2)
        exdate_lines = [line for line in text.splitlines() if line.startswith("EXDATE")]
        assert exdate_lines
        assert exdate_lines[0].endswith(":20240108")

    def test_all_day_until_is_a_date(self):
        rule = RecurrenceRule(frequency="daily", end_type="on_date", end_date=date(2024, 1, 5))
        event = _event(
            recurrence_rule=rule, series_start=datetime(2024, 1, 2), is_all_day=True,
            rrule=to_rrule(rule, datetime(2024, 1, 2), all_day=True),
        )
        text = series_to_ics(event)
        assert "DTSTART;VALUE=DATE:20240102" in text
        assert "T235959" not in text
        assert _component(text, "VEVENT")["rrule"]["UNTIL"] == [date(2024, 1, 5)]

    def test_all_day_until_fixed_for_older_stored_string(self):
        rule = RecurrenceRule(frequency="daily", end_type="on_date", end_date=date(2024, 1, 5))
        event = _event(
            recurrence_rule=rule, series_start=datetime(2024, 1, 2), is_all_day=True,
            rrule="DTSTART:20240102T000000\nRRULE:FREQ=DAILY;INTERVAL=1;UNTIL=20240105T235959",
        )
        text = series_to_ics(event)
        assert "T235959" not in text
        assert _component(text, "VEVENT")["rrule"]["UNTIL"] == [date(2024, 1, 5)]

    def test_timed_until_keeps_time(self):
        rule = RecurrenceRule(frequency="daily", end_type="on_date", end_date=date(2024, 1, 5))
        text = series_to_ics(_event(recurrence_rule=rule))
        assert _component(text, "VEVENT")["rrule"]["UNTIL"] == [datetime(2024, 1, 5, 23, 59, 59)]

    def test_rrule_rebuilt_when_not_stored(self):
        vevent = _component(series_to_ics(_event(rrule="")), "VEVENT")
        assert vevent["rrule"]["FREQ"] == ["WEEKLY"]


class TestTaskExport:
    def test_task_is_a_vtodo(self):
        task = TaskSeries(
            id="t1", family_id="fam", title="Dishes",
            recurrence_rule=RecurrenceRule(frequency="daily"),
            series_start=datetime(2024, 1, 1, 19, 0),
        )
        text = series_to_ics(task)
        assert "BEGIN:VTODO" in text
        assert "BEGIN:VEVENT" not in text
        vtodo = _component(text, "VTODO")
        assert vtodo["rrule"]["FREQ"] == ["DAILY"]
