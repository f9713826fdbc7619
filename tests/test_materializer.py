"""Tests for familyhub.core.materializer — virtual task and event rows."""

import sqlite3

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock

from familyhub.core.materializer import InstanceMaterializer, parse_virtual_id, virtual_id
from familyhub.data.models import (
    EventSeries,
    ExceptionType,
    RecurrenceRule,
    SeriesType,
    TaskSeries,
)


def _task(**overrides):
    data = dict(
        id="",
        family_id="fam",
        title="Feed the cat",
        recurrence_rule=RecurrenceRule(frequency="daily"),
        series_start=datetime(2024, 1, 1, 8, 0),
        points=2,
        assigned_profiles=["p1"],
    )
    data.update(overrides)
    return TaskSeries(**data)


def _event(**overrides):
    data = dict(
        id="",
        family_id="fam",
        title="Swimming",
        recurrence_rule=RecurrenceRule(frequency="weekly", weekdays=["tuesday"]),
        series_start=datetime(2024, 1, 2, 17, 0),
        duration_minutes=45,
        location="Pool",
        attendee_profiles=["p1", "ghost"],
    )
    data.update(overrides)
    return EventSeries(**data)


@pytest.fixture
def profiles(profile_db):
    profile_db.add_profile("fam", "Mom", profile_id="p1")
    profile_db.add_profile("fam", "Noa", profile_id="p2")
    return profile_db


@pytest.fixture
def materializer(series_store, exception_store, profile_directory, profiles):
    return InstanceMaterializer(series_store, exception_store, profile_directory)


# ---------------------------------------------------------------------------
# Virtual ids
# ---------------------------------------------------------------------------


class TestVirtualIds:
    def test_build(self):
        assert virtual_id("abc", date(2024, 1, 5)) == "abc-2024-01-05"
        assert virtual_id("abc", date(2024, 1, 5), "p1") == "abc-2024-01-05-p1"

    def test_parse_uuid_series(self):
        sid = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"
        pid = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"
        assert parse_virtual_id(f"{sid}-2024-01-05") == (sid, date(2024, 1, 5), None)
        assert parse_virtual_id(f"{sid}-2024-01-05-{pid}") == (sid, date(2024, 1, 5), pid)

    def test_parse_rejects_plain_ids(self):
        with pytest.raises(ValueError):
            parse_virtual_id("3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTaskInstances:
    @pytest.mark.asyncio
    async def test_shared_instance_per_date(self, service, materializer):
        series = await service.create_series(_task())
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 3))
        assert [r.id for r in rows] == [f"{series.id}-2024-01-0{d}" for d in (1, 2, 3)]
        assert rows[0].points == 2
        assert [p.display_name for p in rows[0].assignees] == ["Mom"]
        assert rows[0].is_virtual is True

    @pytest.mark.asyncio
    async def test_everyone_rule_gives_one_instance_per_assignee(self, service, materializer):
        series = await service.create_series(
            _task(completion_rule="everyone", assigned_profiles=["p1", "p2"])
        )
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 1))
        assert sorted(r.id for r in rows) == [
            f"{series.id}-2024-01-01-p1", f"{series.id}-2024-01-01-p2",
        ]
        assert {r.profile_id: r.assignees[0].display_name for r in rows} == {"p1": "Mom", "p2": "Noa"}

    @pytest.mark.asyncio
    async def test_everyone_with_single_assignee_is_shared(self, service, materializer):
        series = await service.create_series(_task(completion_rule="everyone"))
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 1))
        assert [r.id for r in rows] == [f"{series.id}-2024-01-01"]

    @pytest.mark.asyncio
    async def test_override_fields_are_merged(self, service, materializer):
        series = await service.create_series(_task())
        await service.create_exception(
            series.id, SeriesType.TASK, date(2024, 1, 2), ExceptionType.OVERRIDE,
            {"points": 10, "assigned_profiles": ["p2"]},
        )
        rows = await materializer.task_instances("fam", date(2024, 1, 2), date(2024, 1, 2))
        assert rows[0].points == 10
        assert rows[0].is_exception is True
        assert [p.display_name for p in rows[0].assignees] == ["Noa"]

    @pytest.mark.asyncio
    async def test_sorted_by_due_date_across_series(self, service, materializer):
        await service.create_series(_task(title="B", recurrence_rule=RecurrenceRule(frequency="daily", interval=2)))
        await service.create_series(_task(title="A", series_start=datetime(2024, 1, 2, 8)))
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 3))
        assert [(r.due_date.day, r.title) for r in rows] == [(1, "B"), (2, "A"), (3, "A"), (3, "B")]

    @pytest.mark.asyncio
    async def test_inactive_and_other_families_ignored(self, service, materializer):
        await service.create_series(_task(is_active=False))
        await service.create_series(_task(family_id="other"))
        assert await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 3)) == []

    @pytest.mark.asyncio
    async def test_bad_stored_rule_skips_only_that_series(self, profile_directory):
        good = _task(id="good")
        bad = _task(id="bad", recurrence_rule=RecurrenceRule(interval=0))
        series_store = MagicMock()
        series_store.list_series = AsyncMock(return_value=[bad, good])
        exception_store = MagicMock()
        exception_store.list_exceptions = AsyncMock(return_value=[])
        materializer = InstanceMaterializer(series_store, exception_store, profile_directory)
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 1))
        assert [r.series_id for r in rows] == ["good"]


    @pytest.mark.asyncio
    async def test_schema_invalid_stored_rule_skips_only_that_series(
        self, service, materializer, tmp_db_path,
    ):
        good = await service.create_series(_task(title="Good"))
        bad = await service.create_series(_task(title="Bad"))
        with sqlite3.connect(tmp_db_path) as conn:
            conn.execute(
                "UPDATE task_series SET recurrence_rule = ? WHERE id = ?",
                ('{"frequency": "hourly"}', bad.id),
            )
        rows = await materializer.task_instances("fam", date(2024, 1, 1), date(2024, 1, 1))
        assert [r.series_id for r in rows] == [good.id]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEventInstances:
    @pytest.mark.asyncio
    async def test_start_end_from_duration(self, service, materializer):
        series = await service.create_series(_event())
        rows = await materializer.event_instances("fam", date(2024, 1, 1), date(2024, 1, 14))
        assert [r.id for r in rows] == [f"{series.id}-2024-01-02", f"{series.id}-2024-01-09"]
        assert rows[0].start == datetime(2024, 1, 2, 17, 0)
        assert rows[0].end == datetime(2024, 1, 2, 17, 45)
        assert rows[0].location == "Pool"

    @pytest.mark.asyncio
    async def test_unknown_attendees_dropped(self, service, materializer):
        await service.create_series(_event())
        rows = await materializer.event_instances("fam", date(2024, 1, 1), date(2024, 1, 7))
        assert [p.id for p in rows[0].attendees] == ["p1"]

    @pytest.mark.asyncio
    async def test_all_day_spans_the_day(self, service, materializer):
        await service.create_series(_event(is_all_day=True))
        rows = await materializer.event_instances("fam", date(2024, 1, 1), date(2024, 1, 7))
        assert rows[0].start == datetime(2024, 1, 2)
        assert rows[0].end == datetime(2024, 1, 3)
        assert rows[0].is_all_day is True

    @pytest.mark.asyncio
    async def test_override_duration_and_start_time(self, service, materializer):
        series = await service.create_series(_event())
        await service.create_exception(
            series.id, SeriesType.EVENT, date(2024, 1, 9), ExceptionType.OVERRIDE,
            {"duration_minutes": 90, "start_time": "16:30", "location": "Lake"},
        )
        rows = await materializer.event_instances("fam", date(2024, 1, 9), date(2024, 1, 9))
        assert rows[0].start == datetime(2024, 1, 9, 16, 30)
        assert rows[0].end == datetime(2024, 1, 9, 18, 0)
        assert rows[0].location == "Lake"

    @pytest.mark.asyncio
    async def test_skipped_occurrence_absent(self, service, materializer):
        series = await service.create_series(_event())
        await service.skip_occurrence(series.id, SeriesType.EVENT, date(2024, 1, 9))
        rows = await materializer.event_instances("fam", date(2024, 1, 1), date(2024, 1, 14))
        assert [r.start.date() for r in rows] == [date(2024, 1, 2)]

    @pytest.mark.asyncio
    async def test_unreadable_override_values_fall_back(self, service, materializer):
        series = await service.create_series(_event())
        await service.create_exception(
            series.id, SeriesType.EVENT, date(2024, 1, 9), ExceptionType.OVERRIDE,
            {"start_time": "9am", "duration_minutes": None, "location": "Lake"},
        )
        rows = await materializer.event_instances("fam", date(2024, 1, 1), date(2024, 1, 14))
        assert [r.start for r in rows] == [datetime(2024, 1, 2, 17, 0), datetime(2024, 1, 9, 17, 0)]
        assert rows[1].end == datetime(2024, 1, 9, 17, 45)
        assert rows[1].location == "Lake"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["25:00", "9", "noon"])
    async def test_out_of_range_start_time_ignored(self, service, materializer, raw):
        series = await service.create_series(_event())
        await service.create_exception(
            series.id, SeriesType.EVENT, date(2024, 1, 9), ExceptionType.OVERRIDE,
            {"start_time": raw},
        )
        rows = await materializer.event_instances("fam", date(2024, 1, 9), date(2024, 1, 9))
        assert rows[0].start == datetime(2024, 1, 9, 17, 0)
