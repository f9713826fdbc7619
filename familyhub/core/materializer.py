"""
FamilyHub — Virtual Instance Materializer.

Turns active series into display rows for a date window. Nothing here is
persisted: each row carries a deterministic virtual id built from the series
id and the occurrence date, so the same occurrence always gets the same id.

    task:   <series_id>-<YYYY-MM-DD>             (shared instance)
            <series_id>-<YYYY-MM-DD>-<profile>   (completion_rule "everyone")
    event:  <series_id>-<YYYY-MM-DD>
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from familyhub.config import settings
from familyhub.core.generator import FallbackGenerator
from familyhub.core.rules import RecurrenceValidationError
from familyhub.data.models import Profile, Series, SeriesInstance, SeriesType

if TYPE_CHECKING:
    from familyhub.ports.profile_port import ProfileDirectory
    from familyhub.ports.store_port import ExceptionStore, SeriesStore

logger = logging.getLogger(__name__)

_VIRTUAL_ID_RE = re.compile(
    r"^(?P<series>.+?)-(?P<date>\d{4}-\d{2}-\d{2})(?:-(?P<profile>.+))?$"
)


@dataclass
class VirtualTaskInstance:
    id: str
    series_id: str
    family_id: str
    due_date: date
    title: str
    description: str = ""
    points: int = 0
    task_group: str = "general"
    completion_rule: str = "any_one"
    profile_id: str | None = None          # set on per-assignee instances
    assignees: list[Profile] = field(default_factory=list)
    is_exception: bool = False
    is_virtual: bool = True


@dataclass
class VirtualEventInstance:
    id: str
    series_id: str
    family_id: str
    start: datetime
    end: datetime
    title: str
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    attendees: list[Profile] = field(default_factory=list)
    is_exception: bool = False
    is_virtual: bool = True


def virtual_id(series_id: str, occurrence_date: date, profile_id: str | None = None) -> str:
    base = f"{series_id}-{occurrence_date.isoformat()}"
    return f"{base}-{profile_id}" if profile_id else base


def parse_virtual_id(value: str) -> tuple[str, date, str | None]:
    """Split a virtual id into (series_id, occurrence date, profile_id or None).

    Raises:
        ValueError: the id does not contain an occurrence date.
    """
    match = _VIRTUAL_ID_RE.match(value or "")
    if match is None:
        raise ValueError(f"Not a virtual instance id: {value!r}")
    occurrence = date.fromisoformat(match["date"])
    return match["series"], occurrence, match["profile"]


def _start_time_override(fields: dict[str, Any], start: datetime) -> datetime:
    """Apply an override's "start_time" ("HH:MM") to an occurrence start.

    An unreadable value is logged and the scheduled start kept.
    """
    raw = fields.get("start_time")
    if not raw:
        return start
    try:
        parsed = datetime.strptime(str(raw), "%H:%M")
    except ValueError:
        logger.warning("Ignoring unreadable start_time override %r on %s", raw, start.date())
        return start
    return start.replace(hour=parsed.hour, minute=parsed.minute)


def _duration_minutes(fields: dict[str, Any], default: int, day: date) -> int:
    raw = fields.get("duration_minutes", default)
    try:
        minutes = int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable duration_minutes %r on %s", raw, day)
        return default
    return max(minutes, 0)


class InstanceMaterializer:
    """Expands a family's active series into virtual task/event rows."""

    def __init__(
        self,
        series_store: SeriesStore,
        exception_store: ExceptionStore,
        profiles: ProfileDirectory,
        max_instances: int | None = None,
        generator: FallbackGenerator | None = None,
    ) -> None:
        self._series = series_store
        self._exceptions = exception_store
        self._profiles = profiles
        self._max_instances = max_instances or settings.MAX_INSTANCES
        self._generator = generator or FallbackGenerator.from_name(settings.GENERATOR_STRATEGY)

    async def _expand(
        self, family_id: str, series_type: SeriesType, range_start: date, range_end: date,
    ) -> list[tuple[Series, SeriesInstance]]:
        expanded: list[tuple[Series, SeriesInstance]] = []
        for series in await self._series.list_series(family_id, series_type, active_only=True):
            exceptions = await self._exceptions.list_exceptions(series.id, series_type)
            try:
                instances = self._generator.for_series(
                    series, exceptions, range_start, range_end, self._max_instances,
                )
            except RecurrenceValidationError as exc:
                # A stored bad rule should not blank the whole window
                logger.warning("Skipping %s series %s: %s", series_type.value, series.id, exc)
                continue
            expanded.extend((series, inst) for inst in instances)
        return expanded

    async def task_instances(
        self, family_id: str, range_start: date, range_end: date,
    ) -> list[VirtualTaskInstance]:
        """All task occurrences in [range_start, range_end], sorted by due date."""
        expanded = await self._expand(family_id, SeriesType.TASK, range_start, range_end)

        wanted = {pid for _, inst in expanded for pid in inst.fields.get("assigned_profiles") or []}
        profiles = await self._profiles.get_profiles(sorted(wanted))

        rows: list[VirtualTaskInstance] = []
        for series, inst in expanded:
            fields = inst.fields
            assigned = list(fields.get("assigned_profiles") or [])
            common = dict(
                series_id=series.id,
                family_id=series.family_id,
                due_date=inst.date,
                title=fields.get("title", series.title),
                description=fields.get("description", ""),
                points=fields.get("points", 0),
                task_group=fields.get("task_group", "general"),
                completion_rule=fields.get("completion_rule", "any_one"),
                is_exception=inst.is_exception,
            )
            if common["completion_rule"] == "everyone" and len(assigned) > 1:
                for pid in assigned:
                    rows.append(VirtualTaskInstance(
                        id=virtual_id(series.id, inst.date, pid),
                        profile_id=pid,
                        assignees=[profiles[pid]] if pid in profiles else [],
                        **common,
                    ))
            else:
                rows.append(VirtualTaskInstance(
                    id=virtual_id(series.id, inst.date),
                    assignees=[profiles[pid] for pid in assigned if pid in profiles],
                    **common,
                ))

        rows.sort(key=lambda r: (r.due_date, r.title, r.id))
        logger.debug("Materialized %d task instance(s) for family %s", len(rows), family_id)
        return rows

    async def event_instances(
        self, family_id: str, range_start: date, range_end: date,
    ) -> list[VirtualEventInstance]:
        """All event occurrences in [range_start, range_end], sorted by start."""
        expanded = await self._expand(family_id, SeriesType.EVENT, range_start, range_end)

        wanted = {pid for _, inst in expanded for pid in inst.fields.get("attendee_profiles") or []}
        profiles = await self._profiles.get_profiles(sorted(wanted))

        rows: list[VirtualEventInstance] = []
        for series, inst in expanded:
            fields = inst.fields
            all_day = bool(fields.get("is_all_day", False))
            if all_day:
                start = datetime.combine(inst.date, time())
                end = start + timedelta(days=1)
            else:
                start = _start_time_override(fields, inst.start)
                minutes = _duration_minutes(fields, series.duration_minutes, inst.date)
                end = start + timedelta(minutes=minutes)
            rows.append(VirtualEventInstance(
                id=virtual_id(series.id, inst.date),
                series_id=series.id,
                family_id=series.family_id,
                start=start,
                end=end,
                title=fields.get("title", series.title),
                description=fields.get("description", ""),
                location=fields.get("location", ""),
                is_all_day=all_day,
                attendees=[
                    profiles[pid] for pid in fields.get("attendee_profiles") or [] if pid in profiles
                ],
                is_exception=inst.is_exception,
            ))

        rows.sort(key=lambda r: (r.start, r.title, r.id))
        logger.debug("Materialized %d event instance(s) for family %s", len(rows), family_id)
        return rows
