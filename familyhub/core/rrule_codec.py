"""
FamilyHub — RRULE codec.

Converts the structured RecurrenceRule into an RFC 5545 recurrence string
(for calendar export and for the stored ``rrule`` column) and back, and
derives a short human-readable summary from a stored string.

Pure functions, no I/O.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time

from dateutil.rrule import rrulestr

from familyhub.core.rules import RecurrenceValidationError
from familyhub.data.models import RecurrenceRule, WEEKDAY_KEYS

logger = logging.getLogger(__name__)

_DAY_CODES: dict[str, str] = {
    "monday": "MO",
    "tuesday": "TU",
    "wednesday": "WE",
    "thursday": "TH",
    "friday": "FR",
    "saturday": "SA",
    "sunday": "SU",
}
_CODE_DAYS = {code: key for key, code in _DAY_CODES.items()}

_ORDINALS: dict[str, int] = {"first": 1, "second": 2, "third": 3, "fourth": 4, "last": -1}
_ORDINAL_NAMES = {n: name for name, n in _ORDINALS.items()}

_FREQ_NAMES = {"DAILY": "daily", "WEEKLY": "weekly", "MONTHLY": "monthly", "YEARLY": "yearly"}

# (singular phrase, plural unit) per frequency
_FREQ_PHRASES = {
    "daily": ("Daily", "days"),
    "weekly": ("Weekly", "weeks"),
    "monthly": ("Monthly", "months"),
    "yearly": ("Yearly", "years"),
}

_WORKWEEK = ["MO", "TU", "WE", "TH", "FR"]
_WEEKEND = ["SA", "SU"]


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time())


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def to_rrule(rule: RecurrenceRule, series_start: date | datetime, all_day: bool = False) -> str:
    """Encode a rule anchored at series_start as a DTSTART + RRULE string.

    All-day series get a date-only DTSTART and UNTIL; timed series use
    floating local date-times for both.

    Example:
        >>> to_rrule(RecurrenceRule(frequency="weekly", interval=2,
        ...          weekdays=["wednesday", "monday"]), date(2024, 1, 1))
        'DTSTART:20240101T000000\\nRRULE:FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE'
    """
    dtstart = _as_datetime(series_start)
    parts = [f"FREQ={rule.frequency.upper()}", f"INTERVAL={rule.interval}"]

    if rule.frequency == "weekly" and rule.weekdays:
        ordered = [d for d in WEEKDAY_KEYS if d in rule.weekdays]
        parts.append("BYDAY=" + ",".join(_DAY_CODES[d] for d in ordered))

    if rule.frequency == "monthly":
        if rule.monthly_type == "on_day" and rule.month_day:
            parts.append(f"BYMONTHDAY={rule.month_day}")
        elif (
            rule.monthly_type == "on_weekday"
            and rule.weekday_ordinal
            and rule.weekday_name
        ):
            parts.append(
                f"BYDAY={_ORDINALS[rule.weekday_ordinal]}{_DAY_CODES[rule.weekday_name]}"
            )

    if rule.end_type == "on_date" and rule.end_date:
        if all_day:
            parts.append(f"UNTIL={rule.end_date:%Y%m%d}")
        else:
            # Inclusive of the whole end day
            parts.append(f"UNTIL={rule.end_date:%Y%m%d}T235959")
    elif rule.end_type == "after_count" and rule.end_count:
        parts.append(f"COUNT={rule.end_count}")

    if all_day:
        header = f"DTSTART;VALUE=DATE:{dtstart:%Y%m%d}"
    else:
        header = f"DTSTART:{dtstart:%Y%m%dT%H%M%S}"
    return header + "\nRRULE:" + ";".join(parts)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _rrule_parts(rrule_string: str) -> dict[str, str]:
    """Split the RRULE line of a recurrence string into a {KEY: value} dict."""
    for line in (rrule_string or "").splitlines():
        line = line.strip()
        if line.upper().startswith("RRULE:"):
            line = line[len("RRULE:"):]
        elif "FREQ=" not in line.upper():
            continue
        parts: dict[str, str] = {}
        for chunk in line.split(";"):
            if "=" in chunk:
                key, value = chunk.split("=", 1)
                parts[key.strip().upper()] = value.strip().upper()
        return parts
    return {}


def _parse_byday(value: str) -> list[tuple[int | None, str]]:
    """Parse "MO,WE" / "-1FR" into [(ordinal or None, day code)]."""
    result: list[tuple[int | None, str]] = []
    for token in value.split(","):
        token = token.strip()
        code = token[-2:]
        if code not in _CODE_DAYS:
            raise ValueError(f"unknown weekday {token!r}")
        prefix = token[:-2]
        result.append((int(prefix) if prefix else None, code))
    return result


def _parse_until(value: str) -> date:
    return datetime.strptime(value[:8], "%Y%m%d").date()


def from_rrule(rrule_string: str) -> RecurrenceRule:
    """Decode a recurrence string back into a RecurrenceRule.

    Raises:
        RecurrenceValidationError: if the string has no usable FREQ or a
            field cannot be parsed.
    """
    parts = _rrule_parts(rrule_string)
    freq = _FREQ_NAMES.get(parts.get("FREQ", ""))
    if freq is None:
        raise RecurrenceValidationError([f"Unsupported or missing FREQ in {rrule_string!r}"])

    try:
        rule = RecurrenceRule(frequency=freq, interval=int(parts.get("INTERVAL", "1")))

        if "BYDAY" in parts:
            days = _parse_byday(parts["BYDAY"])
            ordinal, code = days[0]
            if freq == "monthly" and ordinal is not None:
                rule.monthly_type = "on_weekday"
                rule.weekday_ordinal = _ORDINAL_NAMES[ordinal]
                rule.weekday_name = _CODE_DAYS[code]
            else:
                rule.weekdays = [_CODE_DAYS[c] for _, c in days]

        if "BYMONTHDAY" in parts:
            rule.monthly_type = "on_day"
            rule.month_day = int(parts["BYMONTHDAY"].split(",")[0])

        if "UNTIL" in parts:
            rule.end_type = "on_date"
            rule.end_date = _parse_until(parts["UNTIL"])
        elif "COUNT" in parts:
            rule.end_type = "after_count"
            rule.end_count = int(parts["COUNT"])
    except (KeyError, ValueError) as exc:
        raise RecurrenceValidationError([f"Cannot parse recurrence string: {exc}"]) from exc

    return rule


def validate_rrule(rrule_string: str) -> tuple[bool, str | None]:
    """Check that a recurrence string is parseable by an RFC 5545 engine."""
    try:
        rrulestr(rrule_string)
    except (ValueError, TypeError) as exc:
        return False, str(exc) or "Invalid RRULE format"
    return True, None


# ---------------------------------------------------------------------------
# Human-readable summary
# ---------------------------------------------------------------------------


def _frequency_phrase(freq: str, interval: int) -> str:
    singular, unit = _FREQ_PHRASES[freq]
    if interval <= 1:
        return singular
    return f"Every {interval} {unit}"


def _weekday_list(codes: list[str]) -> str:
    if codes == _WORKWEEK:
        return "weekdays"
    if codes == _WEEKEND:
        return "weekends"
    return ", ".join(_CODE_DAYS[c][:3].capitalize() for c in codes)


def _detail_phrase(freq: str, parts: dict[str, str]) -> str:
    """The "on ..." part of a summary; empty when the data is incomplete."""
    try:
        if freq == "weekly" and "BYDAY" in parts:
            order = list(_CODE_DAYS)
            codes = sorted({c for _, c in _parse_byday(parts["BYDAY"])}, key=order.index)
            return f" on {_weekday_list(codes)}"
        if freq == "monthly" and "BYMONTHDAY" in parts:
            return f" on day {int(parts['BYMONTHDAY'].split(',')[0])}"
        if freq == "monthly" and "BYDAY" in parts:
            ordinal, code = _parse_byday(parts["BYDAY"])[0]
            if ordinal not in _ORDINAL_NAMES:
                return ""
            return f" on the {_ORDINAL_NAMES[ordinal]} {_CODE_DAYS[code].capitalize()}"
    except ValueError:
        logger.debug("Incomplete recurrence detail in %s", parts)
    return ""


def _end_phrase(parts: dict[str, str]) -> str:
    try:
        if "UNTIL" in parts:
            until = _parse_until(parts["UNTIL"])
            return f", until {until:%b} {until.day}, {until.year}"
        if "COUNT" in parts:
            count = int(parts["COUNT"])
            return ", once" if count == 1 else f", {count} times"
    except ValueError:
        logger.debug("Unreadable end condition in %s", parts)
    return ""


def get_rrule_summary(rrule_string: str) -> str:
    """Describe a recurrence string in plain English.

    Examples: "Every 2 weeks on Mon, Wed", "Monthly on the last Friday",
    "Daily, 10 times". Display-only: never raises; malformed detail
    degrades to the frequency and interval alone.
    """
    parts = _rrule_parts(rrule_string)
    freq = _FREQ_NAMES.get(parts.get("FREQ", ""))
    if freq is None:
        return "Invalid recurrence rule"

    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        interval = 1

    return _frequency_phrase(freq, interval) + _detail_phrase(freq, parts) + _end_phrase(parts)
