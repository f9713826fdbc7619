"""iCalendar export — renders a series as a VCALENDAR string.

Events become a VEVENT with DTEND; tasks become a VTODO. The recurrence comes
from the series' stored codec string and every persisted exdate is written as
an EXDATE, so other calendar apps show the same occurrences we generate.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from icalendar import Calendar as iCalendar
from icalendar import Event as iEvent
from icalendar import Todo as iTodo
from icalendar import vRecur

from familyhub.core.generator import normalize_start
from familyhub.core.rrule_codec import to_rrule
from familyhub.data.models import EventSeries, Series

logger = logging.getLogger(__name__)

PRODID = "-//FamilyHub//Recurrence Engine//EN"

_UNTIL_TIME_RE = re.compile(r"(UNTIL=\d{8})T\d{6}Z?", re.IGNORECASE)


def _rrule_line(rrule_string: str, date_only: bool = False) -> str:
    """Return the bare "FREQ=...;..." part of a DTSTART + RRULE string.

    With date_only, a date-time UNTIL is cut down to its date so it matches
    a VALUE=DATE DTSTART.
    """
    for line in rrule_string.splitlines():
        line = line.strip()
        if line.upper().startswith("RRULE:"):
            line = line[len("RRULE:"):]
        elif not line.upper().startswith("FREQ="):
            continue
        if date_only:
            line = _UNTIL_TIME_RE.sub(r"\1", line)
        return line
    return ""


def series_to_ics(series: Series) -> str:
    """Build an iCalendar document for one series."""
    dtstart = normalize_start(series.series_start, series.all_day)

    cal = iCalendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")

    component = iEvent() if isinstance(series, EventSeries) else iTodo()
    component.add("uid", series.id)
    component.add("summary", series.title)
    if series.description:
        component.add("description", series.description)

    if series.all_day:
        component.add("dtstart", dtstart.date())
    else:
        component.add("dtstart", dtstart)

    if isinstance(series, EventSeries):
        if series.is_all_day:
            component.add("dtend", dtstart.date() + timedelta(days=1))
        else:
            component.add("dtend", dtstart + timedelta(minutes=series.duration_minutes))
        if series.location:
            component.add("location", series.location)

    rrule_string = series.rrule or to_rrule(series.recurrence_rule, dtstart, all_day=series.all_day)
    line = _rrule_line(rrule_string, date_only=series.all_day)
    if line:
        component.add("rrule", vRecur.from_ical(line))
    else:
        logger.warning("Series %s has no usable RRULE; exporting a single occurrence", series.id)

    if series.exdates:
        if series.all_day:
            excluded = sorted(set(series.exdates))
        else:
            excluded = [datetime.combine(d, dtstart.time()) for d in sorted(set(series.exdates))]
        component.add("exdate", excluded)

    cal.add_component(component)
    return cal.to_ical().decode("utf-8")
