"""
FamilyHub — Data Models.

Series, exceptions and the recurrence rule they carry. A series owns its
rule by value: every series row stores its own copy of the rule JSON, so a
split or an edit never leaks into a sibling series.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Frequency = Literal["daily", "weekly", "monthly", "yearly"]
WeekdayKey = Literal[
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"
]
MonthlyType = Literal["on_day", "on_weekday"]
OrdinalPosition = Literal["first", "second", "third", "fourth", "last"]
EndType = Literal["never", "on_date", "after_count"]

# Monday first, matching date.weekday()
WEEKDAY_KEYS: tuple[str, ...] = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)


def weekday_key(d: date) -> str:
    """Return the weekday key ("monday".."sunday") of a date."""
    return WEEKDAY_KEYS[d.weekday()]


# ---------------------------------------------------------------------------
# Recurrence rule — shared JSON contract with the stored recurrence_rule column
# ---------------------------------------------------------------------------


class RecurrenceRule(BaseModel):
    """Structured recurrence rule, stored as JSON on every series row.

    JSON example:
    {
        "frequency": "monthly",
        "interval": 1,
        "monthlyType": "on_weekday",
        "weekdayOrdinal": "last",
        "weekdayName": "friday",
        "endType": "after_count",
        "endCount": 10
    }

    Fields that do not apply to the current frequency are kept as-is and
    ignored by the generator.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    frequency: Frequency = "daily"
    interval: int = 1
    weekdays: list[WeekdayKey] = Field(default_factory=list)
    monthly_type: MonthlyType | None = Field(default=None, alias="monthlyType")
    month_day: int | None = Field(default=None, alias="monthDay")
    weekday_ordinal: OrdinalPosition | None = Field(default=None, alias="weekdayOrdinal")
    weekday_name: WeekdayKey | None = Field(default=None, alias="weekdayName")
    end_type: EndType = Field(default="never", alias="endType")
    end_date: date | None = Field(default=None, alias="endDate")
    end_count: int | None = Field(default=None, alias="endCount")

    @field_validator("weekdays", mode="before")
    @classmethod
    def parse_weekdays(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v.lower()]
        return [d.lower() if isinstance(d, str) else d for d in v]

    @field_validator("weekday_name", mode="before")
    @classmethod
    def parse_weekday_name(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("end_date", mode="before")
    @classmethod
    def parse_end_date(cls, v: Any) -> Any:
        # Older rows stored a full ISO timestamp ("2024-03-01T00:00:00.000Z")
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    def to_json(self) -> dict:
        """Serialize with the stored camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Series — tagged union of task and event variants
# ---------------------------------------------------------------------------


class SeriesType(Enum):
    TASK = "task"
    EVENT = "event"


class ExceptionType(Enum):
    SKIP = "skip"
    OVERRIDE = "override"


@dataclass
class BaseSeries:
    """Fields shared by every recurring series."""

    id: str
    family_id: str
    title: str
    recurrence_rule: RecurrenceRule
    series_start: datetime                 # DTSTART; authoritative lower bound by date
    created_by: str = ""
    description: str = ""
    series_end: date | None = None         # inclusive hard cutoff, set by split
    original_series_id: str | None = None  # lineage after a split
    is_active: bool = True
    rrule: str = ""                        # codec string kept for calendar export
    exdates: list[date] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    DISPLAY_FIELDS: ClassVar[tuple[str, ...]] = ("title", "description")

    @property
    def all_day(self) -> bool:
        return False

    def base_fields(self) -> dict[str, Any]:
        """The per-occurrence fields an override may replace."""
        return {name: getattr(self, name) for name in self.DISPLAY_FIELDS}


@dataclass
class TaskSeries(BaseSeries):
    """A recurring household task (chore)."""

    points: int = 0
    task_group: str = "general"
    completion_rule: str = "any_one"       # "any_one" | "everyone"
    assigned_profiles: list[str] = field(default_factory=list)
    series_type: SeriesType = field(default=SeriesType.TASK, init=False)

    DISPLAY_FIELDS: ClassVar[tuple[str, ...]] = (
        "title", "description", "points", "task_group",
        "completion_rule", "assigned_profiles",
    )


@dataclass
class EventSeries(BaseSeries):
    """A recurring calendar event."""

    location: str = ""
    duration_minutes: int = 60
    is_all_day: bool = False
    attendee_profiles: list[str] = field(default_factory=list)
    series_type: SeriesType = field(default=SeriesType.EVENT, init=False)

    DISPLAY_FIELDS: ClassVar[tuple[str, ...]] = (
        "title", "description", "location", "duration_minutes",
        "is_all_day", "attendee_profiles",
    )

    @property
    def all_day(self) -> bool:
        return self.is_all_day


Series = Union[TaskSeries, EventSeries]


# ---------------------------------------------------------------------------
# Exceptions and generated instances
# ---------------------------------------------------------------------------


@dataclass
class RecurrenceException:
    """A per-date deviation from a series: skip or override.

    Unique on (series_id, series_type, exception_date).
    """

    id: str
    series_id: str
    series_type: SeriesType
    exception_date: date
    exception_type: ExceptionType
    override_data: dict[str, Any] | None = None
    created_by: str = ""
    created_at: str = ""


@dataclass
class SeriesInstance:
    """One generated occurrence. Never persisted."""

    date: date
    start: datetime
    is_exception: bool = False
    exception_type: ExceptionType | None = None
    override_data: dict[str, Any] | None = None
    original_data: Series | None = None
    series_type: SeriesType | None = None

    @property
    def fields(self) -> dict[str, Any]:
        """Series base fields shallow-merged with the override payload."""
        base = self.original_data.base_fields() if self.original_data else {}
        return {**base, **(self.override_data or {})}


@dataclass
class Profile:
    """A family member as shown next to tasks and events."""

    id: str
    family_id: str
    display_name: str
    color: str = ""


@dataclass
class LegacyEvent:
    """A pre-series event with its recurrence embedded in recurrence_options."""

    id: str
    family_id: str
    title: str
    start_date: datetime
    end_date: datetime
    created_by: str = ""
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    recurrence_options: dict[str, Any] | None = None
    migrated_to_series: bool = False
