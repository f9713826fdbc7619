"""
FamilyHub — Series Mutation Service.

Creates, edits, splits and deletes recurring series and their per-date
exceptions. All persistence goes through the store ports; views learn about
changes through the optional ChangeNotifier.

Lifecycle of a series:  Active -> (Updated)* -> (Split) -> Deleted.

Splitting is a sequence of independent writes (truncate the original, create
the successor, move exceptions). There is no transaction across them: if a
later step fails the caller gets a PartialSplitError describing exactly which
steps completed.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from familyhub.config import settings
from familyhub.core.generator import (
    FallbackGenerator,
    count_occurrences_before,
    next_occurrence,
    normalize_start,
)
from familyhub.core.rrule_codec import to_rrule
from familyhub.core.rules import RecurrenceValidationError, ensure_valid_rule, rule_from_storage
from familyhub.data.models import (
    ExceptionType,
    RecurrenceException,
    RecurrenceRule,
    Series,
    SeriesInstance,
    SeriesType,
    weekday_key,
)
from familyhub.ports.notification_port import SeriesChange
from familyhub.ports.store_port import PersistenceError, SeriesNotFoundError

if TYPE_CHECKING:
    from familyhub.ports.notification_port import ChangeNotifier
    from familyhub.ports.store_port import ExceptionStore, SeriesStore

logger = logging.getLogger(__name__)

# Fields a caller may never change through update_series
_IMMUTABLE_FIELDS = frozenset({"id", "family_id", "series_type", "created_at", "created_by"})


# ---------------------------------------------------------------------------
# Result and error types
# ---------------------------------------------------------------------------


class EditScope(Enum):
    THIS_ONLY = "this_only"
    THIS_AND_FOLLOWING = "this_and_following"
    ALL_OCCURRENCES = "all_occurrences"


@dataclass
class SplitResult:
    """Per-step outcome of a split."""

    original_series_id: str
    split_date: date
    original_truncated: bool = False
    new_series: Series | None = None
    overrides_moved: int = 0
    skips_moved: int = 0
    notified: bool = False
    failed_step: str | None = None   # "create_new_series" | "move_exceptions"
    error: str = ""

    @property
    def complete(self) -> bool:
        return self.failed_step is None and self.new_series is not None


class PartialSplitError(PersistenceError):
    """A split failed after the original series was already truncated."""

    def __init__(self, result: SplitResult) -> None:
        self.result = result
        super().__init__(
            f"Split of series {result.original_series_id} on {result.split_date} "
            f"failed at step '{result.failed_step}': {result.error}"
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _coerce_start(value: Any, default_time: time = time()) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, default_time)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        return parsed
    raise RecurrenceValidationError([f"Invalid series start: {value!r}"])


def _coerce_date(value: Any) -> date | None:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    return date.fromisoformat(str(value)[:10])


def _pinned_rule(rule: RecurrenceRule, series_start: datetime) -> RecurrenceRule:
    """Copy a rule with start-derived defaults written out explicitly.

    Weekly weekdays and the monthly day otherwise follow the start date, which
    moves when a series is split.
    """
    pinned = rule.model_copy(deep=True)
    if pinned.frequency == "weekly" and not pinned.weekdays:
        pinned.weekdays = [weekday_key(series_start.date())]
    if pinned.frequency == "monthly" and pinned.monthly_type != "on_weekday":
        pinned.monthly_type = "on_day"
        if pinned.month_day is None:
            pinned.month_day = series_start.day
    return pinned


class SeriesService:
    """Mutations on task and event series and their exceptions."""

    def __init__(
        self,
        series_store: SeriesStore,
        exception_store: ExceptionStore,
        notifier: ChangeNotifier | None = None,
        generator: FallbackGenerator | None = None,
        max_instances: int | None = None,
    ) -> None:
        self._series = series_store
        self._exceptions = exception_store
        self._notifier = notifier
        self._generator = generator or FallbackGenerator.from_name(settings.GENERATOR_STRATEGY)
        self._max_instances = max_instances or settings.MAX_INSTANCES

    # --- internals ---

    async def _load(self, series_id: str, series_type: SeriesType) -> Series:
        series = await self._series.get_series(series_type, series_id)
        if series is None:
            raise SeriesNotFoundError(series_type, series_id)
        return series

    async def _notify(self, action: str, series: Series, related_ids: list[str] | None = None) -> bool:
        """Best-effort change notification. Returns True if delivered."""
        if self._notifier is None:
            return False
        change = SeriesChange(
            action=action,
            series_type=series.series_type,
            series_id=series.id,
            family_id=series.family_id,
            related_ids=list(related_ids or []),
        )
        try:
            await self._notifier.series_changed(change)
        except Exception as exc:
            logger.error(
                "Change notification '%s' for series %s failed: %s", action, series.id, exc,
            )
            return False
        return True

    @staticmethod
    def _refresh_rrule(series: Series) -> None:
        series.rrule = to_rrule(
            series.recurrence_rule,
            normalize_start(series.series_start, series.all_day),
            all_day=series.all_day,
        )

    @staticmethod
    def _apply_fields(series: Series, updates: dict[str, Any]) -> None:
        """Assign updates onto a series, coercing rule/date values."""
        allowed = {f.name for f in dataclasses.fields(series)} - _IMMUTABLE_FIELDS
        unknown = sorted(set(updates) - allowed)
        if unknown:
            raise RecurrenceValidationError(
                [f"Field '{name}' cannot be set on a {series.series_type.value} series" for name in unknown]
            )
        for name, value in updates.items():
            if name == "recurrence_rule":
                value = rule_from_storage(value).model_copy(deep=True)
            elif name == "series_start":
                value = _coerce_start(value, series.series_start.time())
            elif name == "series_end":
                value = _coerce_date(value)
            elif name == "exdates":
                value = sorted({_coerce_date(d) for d in value})
            setattr(series, name, value)

    # --- create / update / delete ---

    async def get_series(self, series_id: str, series_type: SeriesType) -> Series | None:
        return await self._series.get_series(series_type, series_id)

    async def create_series(self, series: Series) -> Series:
        """Validate and store a new series, assigning its id and timestamps."""
        ensure_valid_rule(series.recurrence_rule, series.series_start)
        series.recurrence_rule = series.recurrence_rule.model_copy(deep=True)
        series.id = series.id or str(uuid.uuid4())
        now = datetime.now().isoformat()
        series.created_at = series.created_at or now
        series.updated_at = now
        series.exdates = sorted(set(series.exdates))
        self._refresh_rrule(series)

        stored = await self._series.insert_series(series)
        logger.info(
            "Created %s series %s '%s' (%s)",
            series.series_type.value, stored.id, stored.title, stored.rrule.replace("\n", " "),
        )
        await self._notify("created", stored)
        return stored

    async def update_series(
        self,
        series_id: str,
        series_type: SeriesType,
        updates: dict[str, Any],
        cascade_to_overrides: bool = False,
        changed_fields: list[str] | None = None,
    ) -> Series:
        """Apply a partial update to a series.

        With cascade_to_overrides, the changed display fields are also written
        into every override exception so those dates pick up the new values.
        Skip exceptions are never touched.
        """
        series = await self._load(series_id, series_type)
        self._apply_fields(series, updates)

        if {"recurrence_rule", "series_start", "is_all_day"} & set(updates):
            ensure_valid_rule(series.recurrence_rule, series.series_start)
            self._refresh_rrule(series)

        series.updated_at = datetime.now().isoformat()
        series = await self._series.update_series(series)
        logger.info("Updated %s series %s: %s", series_type.value, series_id, sorted(updates))

        if cascade_to_overrides:
            fields = changed_fields if changed_fields is not None else list(updates)
            payload = {
                f: updates[f] for f in fields if f in updates and f in series.DISPLAY_FIELDS
            }
            if payload:
                cascaded = 0
                for exc in await self._exceptions.list_exceptions(series_id, series_type):
                    if exc.exception_type is not ExceptionType.OVERRIDE:
                        continue
                    await self._exceptions.upsert_exception(
                        series_id, series_type, exc.exception_date, ExceptionType.OVERRIDE,
                        {**(exc.override_data or {}), **payload}, exc.created_by,
                    )
                    cascaded += 1
                logger.info(
                    "Cascaded %s to %d override(s) of series %s", sorted(payload), cascaded, series_id,
                )

        await self._notify("updated", series)
        return series

    async def delete_series(self, series_id: str, series_type: SeriesType) -> int:
        """Delete a series and all its exceptions. Returns the exceptions removed."""
        series = await self._load(series_id, series_type)
        removed = await self._exceptions.delete_exceptions_for_series(series_id, series_type)
        await self._series.delete_series(series_type, series_id)
        logger.info(
            "Deleted %s series %s with %d exception(s)", series_type.value, series_id, removed,
        )
        await self._notify("deleted", series)
        return removed

    # --- exceptions ---

    async def create_exception(
        self,
        series_id: str,
        series_type: SeriesType,
        exception_date: date,
        exception_type: ExceptionType,
        override_data: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> RecurrenceException:
        """Skip or override a single date.

        A new override payload is merged over an existing override for the
        same date; the stored row itself is always replaced. The series
        exdates list tracks skipped dates for calendar export.
        """
        series = await self._load(series_id, series_type)

        payload = None
        if exception_type is ExceptionType.OVERRIDE:
            payload = dict(override_data or {})
            existing = await self._exceptions.get_exception(series_id, series_type, exception_date)
            if existing is not None and existing.exception_type is ExceptionType.OVERRIDE:
                payload = {**(existing.override_data or {}), **payload}

        exception = await self._exceptions.upsert_exception(
            series_id, series_type, exception_date, exception_type, payload, created_by,
        )

        exdates = set(series.exdates)
        if exception_type is ExceptionType.SKIP:
            exdates.add(exception_date)
        else:
            exdates.discard(exception_date)
        if exdates != set(series.exdates):
            series.exdates = sorted(exdates)
            await self._series.update_series(series)

        logger.info(
            "%s exception on %s for %s series %s",
            exception_type.value.capitalize(), exception_date, series_type.value, series_id,
        )
        await self._notify("exception", series)
        return exception

    async def skip_occurrence(
        self,
        series_id: str,
        series_type: SeriesType,
        occurrence_date: date,
        created_by: str | None = None,
    ) -> RecurrenceException:
        return await self.create_exception(
            series_id, series_type, occurrence_date, ExceptionType.SKIP, created_by=created_by,
        )

    async def restore_occurrence(
        self, series_id: str, series_type: SeriesType, occurrence_date: date,
    ) -> bool:
        """Remove any exception on a date so it follows the series again."""
        series = await self._load(series_id, series_type)
        removed = await self._exceptions.delete_exception(series_id, series_type, occurrence_date)
        if occurrence_date in series.exdates:
            series.exdates = [d for d in series.exdates if d != occurrence_date]
            await self._series.update_series(series)
            removed = True
        if removed:
            logger.info("Restored %s of %s series %s", occurrence_date, series_type.value, series_id)
            await self._notify("exception", series)
        return removed

    # --- split ---

    async def split_series(
        self,
        original_series_id: str,
        series_type: SeriesType,
        split_date: date,
        new_series_data: dict[str, Any] | None = None,
    ) -> SplitResult:
        """End a series the day before split_date and continue it as a new one.

        Raises:
            RecurrenceValidationError: split date or new rule is unusable.
            PersistenceError: truncating the original failed (nothing changed).
            PartialSplitError: a later step failed; see its ``result``.
        """
        original = await self._load(original_series_id, series_type)
        data = dict(new_series_data or {})
        start_day = original.series_start.date()

        if split_date <= start_day:
            raise RecurrenceValidationError(
                [f"Split date {split_date} must be after the series start {start_day}"]
            )

        # Work out the successor before writing anything
        if "recurrence_rule" in data:
            new_rule = rule_from_storage(data.pop("recurrence_rule")).model_copy(deep=True)
            new_start = _coerce_start(
                data.pop("series_start", split_date), original.series_start.time(),
            )
        else:
            first = next_occurrence(
                original.series_start, original.recurrence_rule, split_date,
                all_day=original.all_day, series_end=original.series_end,
            )
            if first is None:
                raise RecurrenceValidationError(
                    [f"Series {original_series_id} has no occurrences on or after {split_date}"]
                )
            new_rule = _pinned_rule(original.recurrence_rule, original.series_start)
            if new_rule.end_type == "after_count" and new_rule.end_count:
                used = count_occurrences_before(
                    original.series_start, original.recurrence_rule, split_date,
                    all_day=original.all_day,
                )
                new_rule.end_count = new_rule.end_count - used
            new_start = _coerce_start(
                data.pop("series_start", first), original.series_start.time(),
            )
        ensure_valid_rule(new_rule, new_start)

        successor = dataclasses.replace(
            original,
            id=str(uuid.uuid4()),
            recurrence_rule=new_rule,
            series_start=new_start,
            original_series_id=original.id,
            exdates=[d for d in original.exdates if d >= split_date],
            rrule="",
        )
        self._apply_fields(successor, data)
        successor.created_at = successor.updated_at = datetime.now().isoformat()
        self._refresh_rrule(successor)
        new_values = {k: v for k, v in data.items() if k in successor.DISPLAY_FIELDS}

        result = SplitResult(original_series_id=original_series_id, split_date=split_date)
        last_day = split_date - timedelta(days=1)

        # 1. Truncate the original. A failure here leaves everything untouched.
        truncated = dataclasses.replace(
            original, recurrence_rule=original.recurrence_rule.model_copy(deep=True),
        )
        truncated.recurrence_rule.end_type = "on_date"
        truncated.recurrence_rule.end_date = last_day
        truncated.recurrence_rule.end_count = None
        truncated.series_end = min(last_day, original.series_end) if original.series_end else last_day
        truncated.exdates = [d for d in original.exdates if d < split_date]
        truncated.updated_at = datetime.now().isoformat()
        self._refresh_rrule(truncated)
        await self._series.update_series(truncated)
        result.original_truncated = True
        logger.info("Truncated %s series %s to end %s", series_type.value, original_series_id, last_day)

        # 2. Create the successor
        try:
            result.new_series = await self._series.insert_series(successor)
        except Exception as exc:
            result.failed_step = "create_new_series"
            result.error = str(exc)
            logger.error("Split of series %s failed creating the successor: %s", original_series_id, exc)
            raise PartialSplitError(result) from exc

        # 3 + 4. Move overrides (with the new base values underneath) and skips
        try:
            for exc_row in await self._exceptions.list_exceptions(original_series_id, series_type):
                if exc_row.exception_date < split_date:
                    continue
                if exc_row.exception_type is ExceptionType.OVERRIDE:
                    payload = {**new_values, **(exc_row.override_data or {})}
                    result.overrides_moved += 1
                else:
                    payload = None
                    result.skips_moved += 1
                await self._exceptions.upsert_exception(
                    successor.id, series_type, exc_row.exception_date,
                    exc_row.exception_type, payload, exc_row.created_by,
                )
                await self._exceptions.delete_exception(
                    original_series_id, series_type, exc_row.exception_date,
                )
        except Exception as exc:
            result.failed_step = "move_exceptions"
            result.error = str(exc)
            logger.error("Split of series %s failed moving exceptions: %s", original_series_id, exc)
            raise PartialSplitError(result) from exc

        logger.info(
            "Split %s series %s on %s into %s (%d override(s), %d skip(s) moved)",
            series_type.value, original_series_id, split_date, successor.id,
            result.overrides_moved, result.skips_moved,
        )
        result.notified = await self._notify("split", truncated, [successor.id])
        return result

    # --- scoped edits and reads ---

    async def edit_occurrence(
        self,
        series_id: str,
        series_type: SeriesType,
        occurrence_date: date,
        changes: dict[str, Any],
        scope: EditScope,
        created_by: str | None = None,
    ) -> Union[RecurrenceException, SplitResult, Series]:
        """Apply an edit made on one occurrence with the chosen scope."""
        if scope is EditScope.THIS_ONLY:
            return await self.create_exception(
                series_id, series_type, occurrence_date, ExceptionType.OVERRIDE,
                changes, created_by,
            )

        if scope is EditScope.THIS_AND_FOLLOWING:
            series = await self._load(series_id, series_type)
            # Splitting at the first occurrence would leave an empty original
            if occurrence_date > series.series_start.date():
                return await self.split_series(series_id, series_type, occurrence_date, changes)

        return await self.update_series(
            series_id, series_type, changes,
            cascade_to_overrides=True, changed_fields=list(changes),
        )

    async def series_instances(
        self,
        series_id: str,
        series_type: SeriesType,
        range_start: date | datetime,
        range_end: date | datetime,
    ) -> list[SeriesInstance]:
        """Generate a stored series' instances within a date range."""
        series = await self._load(series_id, series_type)
        exceptions = await self._exceptions.list_exceptions(series_id, series_type)
        return self._generator.for_series(
            series, exceptions, range_start, range_end, self._max_instances,
        )
