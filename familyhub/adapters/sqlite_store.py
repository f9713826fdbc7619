"""SQLite store adapters — implement the store and profile ports.

The sqlite3 classes in familyhub.data.db are synchronous; every call is run
with asyncio.to_thread so the event loop never blocks on disk I/O.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, datetime
from typing import Any

from familyhub.data.db import ExceptionDB, LegacyEventDB, ProfileDB, SeriesDB
from familyhub.data.models import (
    ExceptionType,
    LegacyEvent,
    Profile,
    RecurrenceException,
    Series,
    SeriesType,
)
from familyhub.ports.store_port import PersistenceError, SeriesNotFoundError

logger = logging.getLogger(__name__)


async def _run(description: str, func, *args, **kwargs):
    """Run a blocking DB call in a thread, converting sqlite and decode errors."""
    try:
        return await asyncio.to_thread(func, *args, **kwargs)
    except PersistenceError:
        raise
    except sqlite3.Error as exc:
        logger.error("SQLite error while trying to %s: %s", description, exc)
        raise PersistenceError(f"Failed to {description}: {exc}") from exc
    except ValueError as exc:
        # Stored row could not be decoded into a domain object
        logger.error("Unreadable row while trying to %s: %s", description, exc)
        raise PersistenceError(f"Failed to {description}: {exc}") from exc


class SqliteSeriesStore:
    """SQLite implementation of SeriesStore."""

    def __init__(self, db: SeriesDB | None = None) -> None:
        self._db = db or SeriesDB()

    async def get_series(self, series_type: SeriesType, series_id: str) -> Series | None:
        return await _run("load series", self._db.get_series, series_type, series_id)

    async def insert_series(self, series: Series) -> Series:
        return await _run("create series", self._db.add_series, series)

    async def update_series(self, series: Series) -> Series:
        series.updated_at = datetime.now().isoformat()
        updated = await _run("update series", self._db.update_series, series)
        if not updated:
            raise SeriesNotFoundError(series.series_type, series.id)
        return series

    async def delete_series(self, series_type: SeriesType, series_id: str) -> None:
        deleted = await _run("delete series", self._db.delete_series, series_type, series_id)
        if not deleted:
            raise SeriesNotFoundError(series_type, series_id)

    async def list_series(
        self, family_id: str, series_type: SeriesType, active_only: bool = True,
    ) -> list[Series]:
        return await _run(
            "list series", self._db.list_series, family_id, series_type, active_only,
        )


class SqliteExceptionStore:
    """SQLite implementation of ExceptionStore."""

    def __init__(self, db: ExceptionDB | None = None) -> None:
        self._db = db or ExceptionDB()

    async def upsert_exception(
        self,
        series_id: str,
        series_type: SeriesType,
        exception_date: date,
        exception_type: ExceptionType,
        override_data: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> RecurrenceException:
        return await _run(
            "save recurrence exception",
            self._db.upsert_exception,
            series_id, series_type, exception_date, exception_type,
            override_data, created_by or "",
        )

    async def get_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> RecurrenceException | None:
        return await _run(
            "load recurrence exception",
            self._db.get_exception, series_id, series_type, exception_date,
        )

    async def list_exceptions(
        self, series_id: str, series_type: SeriesType,
    ) -> list[RecurrenceException]:
        return await _run(
            "list recurrence exceptions", self._db.list_exceptions, series_id, series_type,
        )

    async def delete_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> bool:
        return await _run(
            "delete recurrence exception",
            self._db.delete_exception, series_id, series_type, exception_date,
        )

    async def delete_exceptions_for_series(
        self, series_id: str, series_type: SeriesType,
    ) -> int:
        return await _run(
            "delete recurrence exceptions",
            self._db.delete_exceptions_for_series, series_id, series_type,
        )


class SqliteProfileDirectory:
    """SQLite implementation of ProfileDirectory."""

    def __init__(self, db: ProfileDB | None = None) -> None:
        self._db = db or ProfileDB()

    async def get_profiles(self, profile_ids: list[str]) -> dict[str, Profile]:
        return await _run("load profiles", self._db.get_profiles, list(profile_ids))


class SqliteLegacyEventStore:
    """SQLite implementation of LegacyEventStore."""

    def __init__(self, db: LegacyEventDB | None = None) -> None:
        self._db = db or LegacyEventDB()

    async def list_unmigrated(self, family_id: str) -> list[LegacyEvent]:
        return await _run("list legacy events", self._db.list_unmigrated, family_id)

    async def get_attendees(self, event_id: str) -> list[str]:
        return await _run("load event attendees", self._db.get_attendees, event_id)

    async def mark_migrated(self, event_id: str, description: str) -> None:
        marked = await _run(
            "flag legacy event as migrated", self._db.mark_migrated, event_id, description,
        )
        if not marked:
            raise PersistenceError(f"Legacy event {event_id} not found")
