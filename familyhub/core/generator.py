"""
FamilyHub — Recurring series instance generator.

Expands a series (start + RecurrenceRule) and its sparse exceptions into
concrete dated occurrences for a date range.

Two interchangeable occurrence strategies produce the raw candidate dates:

- RRuleStrategy: python-dateutil's rrule engine (primary).
- SteppingStrategy: plain calendar stepping, kept as the fallback path for
  rules the primary engine cannot expand.

InstanceGenerator applies the shared range / boundary / exception logic on
top of a strategy, and FallbackGenerator tries the primary strategy first and
the fallback second. Generation is synchronous and side-effect-free.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable, Iterator
from datetime import date, datetime, time, timedelta
from typing import Any, Protocol

from dateutil.rrule import (
    DAILY,
    FR,
    MO,
    MONTHLY,
    SA,
    SU,
    TH,
    TU,
    WE,
    WEEKLY,
    YEARLY,
    rrule,
    weekday,
)

from familyhub.core.rules import RecurrenceValidationError, ensure_valid_rule
from familyhub.data.models import (
    WEEKDAY_KEYS,
    ExceptionType,
    RecurrenceException,
    RecurrenceRule,
    Series,
    SeriesInstance,
    SeriesType,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_INSTANCES = 1000

# Upper bound on candidates examined in one call, whatever the range
_MAX_SCAN = 200_000

_FREQ_MAP = {
    "daily": DAILY,
    "weekly": WEEKLY,
    "monthly": MONTHLY,
    "yearly": YEARLY,
}

_DAY_MAP: dict[str, weekday] = {
    "monday": MO,
    "tuesday": TU,
    "wednesday": WE,
    "thursday": TH,
    "friday": FR,
    "saturday": SA,
    "sunday": SU,
}

_ORDINAL_MAP = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}


class RecurrenceGenerationError(Exception):
    """Raised when a strategy cannot expand a rule (overflow, runaway scan)."""


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def normalize_start(series_start: date | datetime, all_day: bool = False) -> datetime:
    """Return the DTSTART used for candidate generation.

    All-day (date-only) series are pinned to midnight; timed series keep
    their time of day.
    """
    if not isinstance(series_start, datetime):
        return datetime.combine(series_start, time())
    if all_day:
        return series_start.replace(hour=0, minute=0, second=0, microsecond=0)
    return series_start


def _month_day(rule: RecurrenceRule, dtstart: datetime) -> int:
    if rule.monthly_type == "on_day" and rule.month_day:
        return rule.month_day
    return dtstart.day


def _weekday_numbers(rule: RecurrenceRule, dtstart: datetime) -> list[int]:
    """Weekly weekday set; an empty set means the start weekday."""
    if rule.weekdays:
        return sorted(WEEKDAY_KEYS.index(d) for d in set(rule.weekdays))
    return [dtstart.weekday()]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class OccurrenceStrategy(Protocol):
    """Yields rule occurrences from dtstart onward, in order.

    Implementations honour ``end_count`` (occurrences counted from dtstart)
    and ignore exceptions, ranges and end dates.
    """

    name: str

    def occurrences(self, dtstart: datetime, rule: RecurrenceRule) -> Iterator[datetime]: ...


class RRuleStrategy:
    """Occurrences from python-dateutil's RFC 5545 engine."""

    name = "rrule"

    @staticmethod
    def rrule_kwargs(rule: RecurrenceRule, dtstart: datetime) -> dict[str, Any]:
        """Translate a rule into dateutil.rrule keyword arguments.

        Month days past the 28th are expressed as "the last of 28..N" so that
        short months clamp to their final day instead of being skipped.
        """
        kwargs: dict[str, Any] = {
            "freq": _FREQ_MAP[rule.frequency],
            "interval": rule.interval,
            "wkst": MO,
        }
        if rule.end_type == "after_count" and rule.end_count:
            kwargs["count"] = rule.end_count

        if rule.frequency == "weekly":
            kwargs["byweekday"] = [
                _DAY_MAP[WEEKDAY_KEYS[n]] for n in _weekday_numbers(rule, dtstart)
            ]

        elif rule.frequency == "monthly":
            if rule.monthly_type == "on_weekday":
                day = _DAY_MAP[rule.weekday_name]
                kwargs["byweekday"] = day(_ORDINAL_MAP[rule.weekday_ordinal])
            else:
                day_of_month = _month_day(rule, dtstart)
                if day_of_month > 28:
                    kwargs["bymonthday"] = tuple(range(28, day_of_month + 1))
                    kwargs["bysetpos"] = -1
                else:
                    kwargs["bymonthday"] = day_of_month

        elif rule.frequency == "yearly":
            kwargs["bymonth"] = dtstart.month
            if dtstart.month == 2 and dtstart.day == 29:
                kwargs["bymonthday"] = (28, 29)
                kwargs["bysetpos"] = -1
            else:
                kwargs["bymonthday"] = dtstart.day

        return kwargs

    def occurrences(self, dtstart: datetime, rule: RecurrenceRule) -> Iterator[datetime]:
        yield from rrule(dtstart=dtstart, **self.rrule_kwargs(rule, dtstart))


class SteppingStrategy:
    """Legacy calendar stepping: walks forward from dtstart unit by unit."""

    name = "stepping"

    def occurrences(self, dtstart: datetime, rule: RecurrenceRule) -> Iterator[datetime]:
        limit = rule.end_count if rule.end_type == "after_count" else None
        produced = 0
        for candidate in self._candidates(dtstart, rule):
            if candidate < dtstart:
                continue
            yield candidate
            produced += 1
            if limit is not None and produced >= limit:
                return

    def _candidates(self, dtstart: datetime, rule: RecurrenceRule) -> Iterator[datetime]:
        if rule.frequency == "daily":
            yield from self._daily(dtstart, rule.interval)
        elif rule.frequency == "weekly":
            yield from self._weekly(dtstart, rule.interval, _weekday_numbers(rule, dtstart))
        elif rule.frequency == "monthly":
            yield from self._monthly(dtstart, rule)
        else:
            yield from self._yearly(dtstart, rule.interval)

    @staticmethod
    def _daily(dtstart: datetime, interval: int) -> Iterator[datetime]:
        current = dtstart
        while True:
            yield current
            current += timedelta(days=interval)

    @staticmethod
    def _weekly(dtstart: datetime, interval: int, days: list[int]) -> Iterator[datetime]:
        # Week 0 is the Monday-based week containing dtstart; only every
        # interval-th week is eligible.
        week_zero = dtstart - timedelta(days=dtstart.weekday())
        week_index = 0
        while True:
            week_start = week_zero + timedelta(weeks=week_index)
            for day in days:
                yield week_start + timedelta(days=day)
            week_index += interval

    @staticmethod
    def _monthly(dtstart: datetime, rule: RecurrenceRule) -> Iterator[datetime]:
        step = 0
        while True:
            total = dtstart.year * 12 + (dtstart.month - 1) + step
            year, month = divmod(total, 12)
            month += 1
            days_in_month = calendar.monthrange(year, month)[1]

            if rule.monthly_type == "on_weekday":
                target = WEEKDAY_KEYS.index(rule.weekday_name)
                ordinal = _ORDINAL_MAP[rule.weekday_ordinal]
                if ordinal == -1:
                    last_weekday = date(year, month, days_in_month).weekday()
                    day = days_in_month - (last_weekday - target) % 7
                else:
                    first_weekday = date(year, month, 1).weekday()
                    day = 1 + (target - first_weekday) % 7 + 7 * (ordinal - 1)
            else:
                day = min(_month_day(rule, dtstart), days_in_month)

            yield dtstart.replace(year=year, month=month, day=day)
            step += rule.interval

    @staticmethod
    def _yearly(dtstart: datetime, interval: int) -> Iterator[datetime]:
        year = dtstart.year
        while True:
            day = min(dtstart.day, calendar.monthrange(year, dtstart.month)[1])
            yield dtstart.replace(year=year, day=day)
            year += interval


STRATEGIES: dict[str, type[RRuleStrategy] | type[SteppingStrategy]] = {
    RRuleStrategy.name: RRuleStrategy,
    SteppingStrategy.name: SteppingStrategy,
}


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


class InstanceGenerator:
    """Applies range, end boundary and exceptions on top of one strategy."""

    def __init__(self, strategy: OccurrenceStrategy) -> None:
        self.strategy = strategy

    def generate(
        self,
        series_start: date | datetime,
        rule: RecurrenceRule,
        exceptions: Iterable[RecurrenceException],
        range_start: date | datetime,
        range_end: date | datetime,
        max_instances: int = DEFAULT_MAX_INSTANCES,
        *,
        all_day: bool = False,
        series_end: date | None = None,
        original_data: Series | None = None,
        series_type: SeriesType | None = None,
        exdates: Iterable[date] = (),
    ) -> list[SeriesInstance]:
        """Expand one series into instances within [range_start, range_end].

        Dates in exdates are dropped like skip exceptions unless an override
        exception exists for the same date.

        Raises:
            RecurrenceValidationError: the rule or cap is invalid.
            RecurrenceGenerationError: the strategy failed while expanding.
        """
        ensure_valid_rule(rule, series_start)
        if max_instances < 1:
            raise RecurrenceValidationError(["Max instances must be at least 1"])

        dtstart = normalize_start(series_start, all_day)
        start_day = dtstart.date()
        first = _as_date(range_start)

        boundary = _as_date(range_end)
        if rule.end_type == "on_date" and rule.end_date is not None:
            boundary = min(boundary, rule.end_date)
        if series_end is not None:
            boundary = min(boundary, series_end)
        if first > boundary:
            return []

        if series_type is None and original_data is not None:
            series_type = original_data.series_type

        # Upstream uniqueness guarantees one exception per date
        by_date = {ex.exception_date: ex for ex in exceptions}
        excluded = set(exdates)

        instances: list[SeriesInstance] = []
        scanned = 0
        try:
            for candidate in self.strategy.occurrences(dtstart, rule):
                day = candidate.date()
                if day > boundary:
                    break
                scanned += 1
                if scanned > _MAX_SCAN:
                    raise RecurrenceGenerationError(
                        f"Scanned more than {_MAX_SCAN} candidates without reaching the range end"
                    )
                if day < first or day < start_day:
                    continue

                exception = by_date.get(day)
                if exception is not None and exception.exception_type is ExceptionType.SKIP:
                    continue
                if exception is None and day in excluded:
                    continue

                is_override = (
                    exception is not None
                    and exception.exception_type is ExceptionType.OVERRIDE
                )
                instances.append(
                    SeriesInstance(
                        date=day,
                        start=candidate,
                        is_exception=is_override,
                        exception_type=ExceptionType.OVERRIDE if is_override else None,
                        override_data=dict(exception.override_data or {}) if is_override else None,
                        original_data=original_data,
                        series_type=series_type,
                    )
                )
                if len(instances) >= max_instances:
                    break
        except (ValueError, OverflowError) as exc:
            raise RecurrenceGenerationError(
                f"{self.strategy.name} strategy failed: {exc}"
            ) from exc

        return instances


class FallbackGenerator:
    """Tries the primary strategy, then the fallback, then gives up quietly.

    A calendar should degrade to "no occurrences" rather than crash, so a
    double failure is logged and an empty list returned. Validation errors
    are not recovered: they describe bad input, not an engine failure.
    """

    def __init__(
        self,
        primary: OccurrenceStrategy | None = None,
        fallback: OccurrenceStrategy | None = None,
    ) -> None:
        self.primary = primary or RRuleStrategy()
        self.fallback = fallback or SteppingStrategy()

    @classmethod
    def from_name(cls, primary: str) -> FallbackGenerator:
        """Build a generator whose primary strategy is named ("rrule" | "stepping")."""
        if primary not in STRATEGIES:
            raise ValueError(f"Unknown generator strategy: {primary!r}")
        other = next(name for name in STRATEGIES if name != primary)
        return cls(STRATEGIES[primary](), STRATEGIES[other]())

    def generate(
        self,
        series_start: date | datetime,
        rule: RecurrenceRule,
        exceptions: Iterable[RecurrenceException],
        range_start: date | datetime,
        range_end: date | datetime,
        max_instances: int = DEFAULT_MAX_INSTANCES,
        **kwargs: Any,
    ) -> list[SeriesInstance]:
        exceptions = list(exceptions)
        for strategy in (self.primary, self.fallback):
            try:
                return InstanceGenerator(strategy).generate(
                    series_start, rule, exceptions, range_start, range_end,
                    max_instances, **kwargs,
                )
            except RecurrenceGenerationError as exc:
                logger.warning(
                    "Instance generation with %s failed: %s", strategy.name, exc,
                )

        logger.error(
            "All generation strategies failed for rule %s starting %s; returning no instances",
            rule.to_json(), series_start,
        )
        return []

    def for_series(
        self,
        series: Series,
        exceptions: Iterable[RecurrenceException],
        range_start: date | datetime,
        range_end: date | datetime,
        max_instances: int = DEFAULT_MAX_INSTANCES,
    ) -> list[SeriesInstance]:
        """Generate instances of a stored series."""
        return self.generate(
            series.series_start,
            series.recurrence_rule,
            exceptions,
            range_start,
            range_end,
            max_instances,
            all_day=series.all_day,
            series_end=series.series_end,
            original_data=series,
            exdates=series.exdates,
        )


_default_generator = FallbackGenerator()


def generate_instances(
    series_start: date | datetime,
    rule: RecurrenceRule,
    exceptions: Iterable[RecurrenceException],
    range_start: date | datetime,
    range_end: date | datetime,
    max_instances: int = DEFAULT_MAX_INSTANCES,
    **kwargs: Any,
) -> list[SeriesInstance]:
    """Generate instances with the default rrule-then-stepping policy.

    Keyword arguments (all_day, series_end, original_data, series_type) are
    passed through to InstanceGenerator.generate.
    """
    return _default_generator.generate(
        series_start, rule, exceptions, range_start, range_end, max_instances, **kwargs,
    )


# ---------------------------------------------------------------------------
# Exception-free helpers (used when splitting)
# ---------------------------------------------------------------------------


def next_occurrence(
    series_start: date | datetime,
    rule: RecurrenceRule,
    on_or_after: date | datetime,
    *,
    all_day: bool = False,
    series_end: date | None = None,
) -> datetime | None:
    """First scheduled occurrence on or after a date, ignoring exceptions."""
    found = generate_instances(
        series_start, rule, [], on_or_after, date.max, 1,
        all_day=all_day, series_end=series_end,
    )
    return found[0].start if found else None


def occurrence_dates(
    series_start: date | datetime,
    rule: RecurrenceRule,
    count: int,
    *,
    all_day: bool = False,
) -> list[date]:
    """The first ``count`` scheduled dates, ignoring exceptions."""
    found = generate_instances(
        series_start, rule, [], series_start, date.max, count, all_day=all_day,
    )
    return [inst.date for inst in found]


def count_occurrences_before(
    series_start: date | datetime,
    rule: RecurrenceRule,
    before: date,
    *,
    all_day: bool = False,
) -> int:
    """How many scheduled occurrences fall strictly before ``before``."""
    if before <= _as_date(series_start):
        return 0
    found = generate_instances(
        series_start, rule, [], series_start, before - timedelta(days=1), _MAX_SCAN,
        all_day=all_day,
    )
    return len(found)
