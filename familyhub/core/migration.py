"""
FamilyHub — Legacy event migration.

Before series existed, a recurring event was a single row in the events table
with its rule embedded in recurrence_options:

    {"enabled": true, "rule": {"frequency": "weekly", "weekdays": ["monday"], ...}}

EventMigrator turns each such row into an EventSeries and keeps the old row
as an annotated artifact flagged migrated_to_series, so it is never picked up
again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from familyhub.core.rules import RecurrenceValidationError, rule_from_storage
from familyhub.data.models import EventSeries, LegacyEvent, SeriesType
from familyhub.ports.store_port import PersistenceError

if TYPE_CHECKING:
    from familyhub.core.series_service import SeriesService
    from familyhub.ports.store_port import LegacyEventStore

logger = logging.getLogger(__name__)

MIGRATION_NOTE = "[MIGRATED TO SERIES - This is the original event]"

_LEGACY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "familyhub:legacy-event")


@dataclass
class MigrationStats:
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class MigrationStatus:
    needs_migration: bool
    count: int


def _is_recurring(event: LegacyEvent) -> bool:
    options = event.recurrence_options or {}
    return bool(options.get("enabled")) and bool(options.get("rule"))


def legacy_series_id(event_id: str) -> str:
    """Stable series id for a legacy event, so a rerun finds its series."""
    return str(uuid.uuid5(_LEGACY_NAMESPACE, event_id))


def annotated_description(description: str) -> str:
    return f"{description}\n\n{MIGRATION_NOTE}" if description else MIGRATION_NOTE


class EventMigrator:
    """Moves a family's legacy recurring events onto event series."""

    def __init__(self, legacy_store: LegacyEventStore, series_service: SeriesService) -> None:
        self._legacy = legacy_store
        self._service = series_service

    async def _migrate_one(self, event: LegacyEvent) -> EventSeries:
        series_id = legacy_series_id(event.id)
        series = await self._service.get_series(series_id, SeriesType.EVENT)
        if series is not None:
            # Created by an earlier run that failed to flag the legacy row
            logger.warning(
                "Legacy event %s already has series %s; flagging it only", event.id, series_id,
            )
        else:
            rule = rule_from_storage(event.recurrence_options["rule"])
            duration = round((event.end_date - event.start_date).total_seconds() / 60)
            attendees = await self._legacy.get_attendees(event.id)

            series = await self._service.create_series(EventSeries(
                id=series_id,
                family_id=event.family_id,
                created_by=event.created_by,
                title=event.title,
                description=event.description,
                location=event.location,
                duration_minutes=max(duration, 0),
                is_all_day=event.is_all_day,
                attendee_profiles=attendees,
                recurrence_rule=rule,
                series_start=event.start_date,
                is_active=True,
            ))

        try:
            await self._legacy.mark_migrated(event.id, annotated_description(event.description))
        except PersistenceError:
            logger.error(
                "Series %s exists for legacy event %s but the event could not be flagged; "
                "the next run will only flag it",
                series.id, event.id,
            )
            raise
        return series

    async def migrate_family(self, family_id: str) -> MigrationStats:
        """Migrate every unmigrated recurring event of a family.

        Failures are counted per event and never abort the run.
        """
        events = await self._legacy.list_unmigrated(family_id)
        stats = MigrationStats(total=len(events))
        if not events:
            logger.info("No legacy events to migrate for family %s", family_id)
            return stats

        for event in events:
            if not _is_recurring(event):
                stats.skipped += 1
                continue
            try:
                created = await self._migrate_one(event)
            except (RecurrenceValidationError, PersistenceError, ValueError) as exc:
                stats.errors += 1
                logger.error("Error migrating event %s: %s", event.id, exc)
                continue
            stats.migrated += 1
            logger.info("Migrated legacy event %s to series %s", event.id, created.id)

        logger.info(
            "Migration for family %s: %d migrated, %d skipped, %d error(s) of %d",
            family_id, stats.migrated, stats.skipped, stats.errors, stats.total,
        )
        return stats

    async def check_status(self, family_id: str) -> MigrationStatus:
        """Report how many legacy recurring events still need migrating."""
        events = await self._legacy.list_unmigrated(family_id)
        count = sum(1 for e in events if _is_recurring(e))
        return MigrationStatus(needs_migration=count > 0, count=count)
