"""
FamilyHub — Recurrence rule validation and presets.

Validation runs before anything is generated or persisted, so a malformed
rule is reported to the caller as a list of field-level messages instead of
surfacing later as an empty calendar.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

import pydantic

from familyhub.data.models import RecurrenceRule, WEEKDAY_KEYS, weekday_key

logger = logging.getLogger(__name__)

PRESETS = ("every_day", "school_days", "weekends", "every_week", "every_month", "every_year")


class RecurrenceValidationError(ValueError):
    """Raised when a rule (or a series edit) is malformed.

    Attributes:
        messages: One human-readable message per offending field.
    """

    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def validate_rule(
    rule: RecurrenceRule, series_start: date | datetime | None = None,
) -> list[str]:
    """Return every problem with the rule; an empty list means it is usable."""
    errors: list[str] = []

    if rule.interval < 1:
        errors.append("Interval must be at least 1")

    if rule.frequency == "monthly":
        if rule.monthly_type == "on_day":
            if rule.month_day is None:
                errors.append("Month day is required for monthly recurrence on a day")
            elif not 1 <= rule.month_day <= 31:
                errors.append("Month day must be between 1 and 31")
        elif rule.monthly_type == "on_weekday":
            if rule.weekday_ordinal is None:
                errors.append("Weekday ordinal is required for monthly recurrence on a weekday")
            if rule.weekday_name is None:
                errors.append("Weekday name is required for monthly recurrence on a weekday")

    if rule.end_type == "on_date":
        if rule.end_date is None:
            errors.append("End date is required when the series ends on a date")
        elif series_start is not None and rule.end_date < _as_date(series_start):
            errors.append("End date must not be before the series start")
    elif rule.end_type == "after_count":
        if rule.end_count is None:
            errors.append("End count is required when the series ends after a count")
        elif rule.end_count < 1:
            errors.append("End count must be at least 1")

    return errors


def ensure_valid_rule(
    rule: RecurrenceRule, series_start: date | datetime | None = None,
) -> None:
    """Raise RecurrenceValidationError if the rule has any problem."""
    errors = validate_rule(rule, series_start)
    if errors:
        logger.info("Rejected recurrence rule %s: %s", rule.to_json(), errors)
        raise RecurrenceValidationError(errors)


def rule_from_storage(data: RecurrenceRule | dict[str, Any]) -> RecurrenceRule:
    """Parse a stored rule dict, turning schema errors into validation errors."""
    if isinstance(data, RecurrenceRule):
        return data.model_copy(deep=True)
    try:
        return RecurrenceRule.model_validate(data or {})
    except pydantic.ValidationError as exc:
        messages = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise RecurrenceValidationError(messages) from exc


def create_rule_from_preset(
    preset: str, reference_date: date | datetime | None = None,
) -> RecurrenceRule:
    """Build one of the built-in quick-pick rules.

    Args:
        preset: One of PRESETS ("custom" returns a plain daily rule).
        reference_date: Date the series starts on; fixes the weekday of
            "every_week" and the day of "every_month".
    """
    ref = _as_date(reference_date) if reference_date is not None else None

    if preset == "every_day":
        return RecurrenceRule(frequency="daily")
    if preset == "school_days":
        return RecurrenceRule(frequency="weekly", weekdays=list(WEEKDAY_KEYS[:5]))
    if preset == "weekends":
        return RecurrenceRule(frequency="weekly", weekdays=["saturday", "sunday"])
    if preset == "every_week":
        return RecurrenceRule(
            frequency="weekly", weekdays=[weekday_key(ref) if ref else "monday"],
        )
    if preset == "every_month":
        return RecurrenceRule(
            frequency="monthly", monthly_type="on_day", month_day=ref.day if ref else 1,
        )
    if preset == "every_year":
        return RecurrenceRule(frequency="yearly")
    if preset == "custom":
        return RecurrenceRule()
    raise ValueError(f"Unknown recurrence preset: {preset!r}")
