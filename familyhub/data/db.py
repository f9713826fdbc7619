"""
FamilyHub — SQLite storage.

Plain synchronous tables for task/event series, recurrence exceptions,
family profiles and the legacy events table. The async store adapters in
familyhub.adapters.sqlite_store wrap these classes; nothing here knows about
recurrence semantics beyond (de)serializing the rule JSON.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any

from familyhub.data.models import (
    EventSeries,
    ExceptionType,
    LegacyEvent,
    Profile,
    RecurrenceException,
    RecurrenceRule,
    Series,
    SeriesType,
    TaskSeries,
)

logger = logging.getLogger(__name__)

SERIES_TABLES = {
    SeriesType.TASK: "task_series",
    SeriesType.EVENT: "event_series",
}

_COMMON_COLUMNS = """
    id                 TEXT    PRIMARY KEY,
    family_id          TEXT    NOT NULL,
    created_by         TEXT    NOT NULL DEFAULT '',
    title              TEXT    NOT NULL,
    description        TEXT    NOT NULL DEFAULT '',
    recurrence_rule    TEXT    NOT NULL,
    series_start       TEXT    NOT NULL,
    series_end         TEXT,
    is_active          INTEGER NOT NULL DEFAULT 1,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL
"""

# Columns added after the first release; older databases get them on startup
_LATE_COLUMNS = {
    "original_series_id": "TEXT",
    "rrule": "TEXT NOT NULL DEFAULT ''",
    "exdates": "TEXT NOT NULL DEFAULT '[]'",
}

_VARIANT_COLUMNS = {
    SeriesType.TASK: """
        points             INTEGER NOT NULL DEFAULT 0,
        task_group         TEXT    NOT NULL DEFAULT 'general',
        completion_rule    TEXT    NOT NULL DEFAULT 'any_one',
        assigned_profiles  TEXT    NOT NULL DEFAULT '[]'
    """,
    SeriesType.EVENT: """
        location           TEXT    NOT NULL DEFAULT '',
        duration_minutes   INTEGER NOT NULL DEFAULT 60,
        is_all_day         INTEGER NOT NULL DEFAULT 0,
        attendee_profiles  TEXT    NOT NULL DEFAULT '[]'
    """,
}


def _now() -> str:
    return datetime.now().isoformat()


def _add_missing_columns(
    conn: sqlite3.Connection, table: str, columns: dict[str, str],
) -> None:
    existing_cols = {
        row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()
    }
    for name, ddl in columns.items():
        if name not in existing_cols:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
            logger.info("Migrated %s: added column %s", table, name)


class _SQLiteDB:
    """Shared connection handling for the FamilyHub tables."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from familyhub.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------


class SeriesDB(_SQLiteDB):
    """SQLite-backed storage for task and event series."""

    def _init_db(self) -> None:
        """Create both series tables if missing, and migrate their schema."""
        with self._connect() as conn:
            for series_type, table in SERIES_TABLES.items():
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    f"({_COMMON_COLUMNS}, {_VARIANT_COLUMNS[series_type]})"
                )
                _add_missing_columns(conn, table, _LATE_COLUMNS)
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_family "
                    f"ON {table} (family_id, is_active)"
                )
        logger.debug("Series tables initialized at %s", self._db_path)

    @staticmethod
    def _series_to_row(series: Series) -> dict[str, Any]:
        row: dict[str, Any] = {
            "id": series.id,
            "family_id": series.family_id,
            "created_by": series.created_by,
            "title": series.title,
            "description": series.description,
            "recurrence_rule": json.dumps(series.recurrence_rule.to_json()),
            "series_start": series.series_start.isoformat(),
            "series_end": series.series_end.isoformat() if series.series_end else None,
            "original_series_id": series.original_series_id,
            "is_active": int(series.is_active),
            "rrule": series.rrule,
            "exdates": json.dumps(sorted(d.isoformat() for d in set(series.exdates))),
            "created_at": series.created_at,
            "updated_at": series.updated_at,
        }
        if isinstance(series, TaskSeries):
            row.update(
                points=series.points,
                task_group=series.task_group,
                completion_rule=series.completion_rule,
                assigned_profiles=json.dumps(series.assigned_profiles),
            )
        else:
            row.update(
                location=series.location,
                duration_minutes=series.duration_minutes,
                is_all_day=int(series.is_all_day),
                attendee_profiles=json.dumps(series.attendee_profiles),
            )
        return row

    @staticmethod
    def _row_to_series(series_type: SeriesType, row: sqlite3.Row) -> Series:
        common: dict[str, Any] = dict(
            id=row["id"],
            family_id=row["family_id"],
            created_by=row["created_by"],
            title=row["title"],
            description=row["description"],
            recurrence_rule=RecurrenceRule.model_validate(json.loads(row["recurrence_rule"])),
            series_start=datetime.fromisoformat(row["series_start"]),
            series_end=date.fromisoformat(row["series_end"]) if row["series_end"] else None,
            original_series_id=row["original_series_id"],
            is_active=bool(row["is_active"]),
            rrule=row["rrule"],
            exdates=[date.fromisoformat(d) for d in json.loads(row["exdates"] or "[]")],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        if series_type is SeriesType.TASK:
            return TaskSeries(
                **common,
                points=row["points"],
                task_group=row["task_group"],
                completion_rule=row["completion_rule"],
                assigned_profiles=json.loads(row["assigned_profiles"]),
            )
        return EventSeries(
            **common,
            location=row["location"],
            duration_minutes=row["duration_minutes"],
            is_all_day=bool(row["is_all_day"]),
            attendee_profiles=json.loads(row["attendee_profiles"]),
        )

    def add_series(self, series: Series) -> Series:
        """Insert a series row. The caller assigns the id."""
        row = self._series_to_row(series)
        table = SERIES_TABLES[series.series_type]
        columns = ", ".join(row)
        placeholders = ", ".join(f":{name}" for name in row)
        with self._connect() as conn:
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", row)
        logger.info(
            "%s series added: %s '%s'",
            series.series_type.value.capitalize(), series.id, series.title,
        )
        return series

    def get_series(self, series_type: SeriesType, series_id: str) -> Series | None:
        """Fetch a single series by ID."""
        table = SERIES_TABLES[series_type]
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {table} WHERE id = ?", (series_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_series(series_type, row)

    def update_series(self, series: Series) -> bool:
        """Overwrite every column of an existing series row."""
        row = self._series_to_row(series)
        table = SERIES_TABLES[series.series_type]
        assignments = ", ".join(f"{name} = :{name}" for name in row if name != "id")
        with self._connect() as conn:
            cursor = conn.execute(f"UPDATE {table} SET {assignments} WHERE id = :id", row)
        updated = cursor.rowcount > 0
        if updated:
            logger.info("%s series %s updated", series.series_type.value.capitalize(), series.id)
        return updated

    def delete_series(self, series_type: SeriesType, series_id: str) -> bool:
        """Permanently delete a series row."""
        table = SERIES_TABLES[series_type]
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (series_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("%s series %s deleted", series_type.value.capitalize(), series_id)
        return deleted

    def list_series(
        self, family_id: str, series_type: SeriesType, active_only: bool = True,
    ) -> list[Series]:
        """List a family's series of one type, oldest start first.

        Rows whose stored rule or columns cannot be decoded are logged and
        left out.
        """
        table = SERIES_TABLES[series_type]
        query = f"SELECT * FROM {table} WHERE family_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY series_start"
        with self._connect() as conn:
            rows = conn.execute(query, (family_id,)).fetchall()

        series: list[Series] = []
        for r in rows:
            try:
                series.append(self._row_to_series(series_type, r))
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Skipping unreadable %s series %s: %s", series_type.value, r["id"], exc,
                )
        return series


# ---------------------------------------------------------------------------
# Recurrence exceptions
# ---------------------------------------------------------------------------


class ExceptionDB(_SQLiteDB):
    """SQLite-backed storage for per-date skip/override exceptions."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS recurrence_exceptions (
                    id              TEXT PRIMARY KEY,
                    series_id       TEXT NOT NULL,
                    series_type     TEXT NOT NULL,
                    exception_date  TEXT NOT NULL,
                    exception_type  TEXT NOT NULL,
                    override_data   TEXT,
                    created_by      TEXT NOT NULL DEFAULT '',
                    created_at      TEXT NOT NULL,
                    UNIQUE (series_id, series_type, exception_date)
                )
            """)
        logger.debug("Recurrence exceptions table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_exception(row: sqlite3.Row) -> RecurrenceException:
        return RecurrenceException(
            id=row["id"],
            series_id=row["series_id"],
            series_type=SeriesType(row["series_type"]),
            exception_date=date.fromisoformat(row["exception_date"]),
            exception_type=ExceptionType(row["exception_type"]),
            override_data=json.loads(row["override_data"]) if row["override_data"] else None,
            created_by=row["created_by"],
            created_at=row["created_at"],
        )

    def upsert_exception(
        self,
        series_id: str,
        series_type: SeriesType,
        exception_date: date,
        exception_type: ExceptionType,
        override_data: dict[str, Any] | None = None,
        created_by: str = "",
    ) -> RecurrenceException:
        """Create or replace the exception for one series date.

        The payload is replaced wholesale; merging is the caller's job.
        """
        payload = (
            json.dumps(override_data)
            if exception_type is ExceptionType.OVERRIDE and override_data is not None
            else None
        )
        key = (series_id, series_type.value, exception_date.isoformat())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO recurrence_exceptions
                    (id, series_id, series_type, exception_date,
                     exception_type, override_data, created_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (series_id, series_type, exception_date) DO UPDATE SET
                    exception_type = excluded.exception_type,
                    override_data  = excluded.override_data,
                    created_by     = excluded.created_by
                """,
                (str(uuid.uuid4()), *key, exception_type.value, payload, created_by, _now()),
            )
            row = conn.execute(
                """
                SELECT * FROM recurrence_exceptions
                WHERE series_id = ? AND series_type = ? AND exception_date = ?
                """,
                key,
            ).fetchone()
        logger.info(
            "Exception upserted: %s %s on %s (%s)",
            series_type.value, series_id, exception_date, exception_type.value,
        )
        return self._row_to_exception(row)

    def get_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> RecurrenceException | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM recurrence_exceptions
                WHERE series_id = ? AND series_type = ? AND exception_date = ?
                """,
                (series_id, series_type.value, exception_date.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_exception(row)

    def list_exceptions(
        self, series_id: str, series_type: SeriesType,
    ) -> list[RecurrenceException]:
        """All exceptions of one series, ordered by date."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM recurrence_exceptions
                WHERE series_id = ? AND series_type = ?
                ORDER BY exception_date
                """,
                (series_id, series_type.value),
            ).fetchall()
        return [self._row_to_exception(r) for r in rows]

    def delete_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM recurrence_exceptions
                WHERE series_id = ? AND series_type = ? AND exception_date = ?
                """,
                (series_id, series_type.value, exception_date.isoformat()),
            )
        return cursor.rowcount > 0

    def delete_exceptions_for_series(self, series_id: str, series_type: SeriesType) -> int:
        """Bulk-delete a series' exceptions. Returns the number removed."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM recurrence_exceptions WHERE series_id = ? AND series_type = ?",
                (series_id, series_type.value),
            )
        logger.info(
            "Deleted %d exceptions of %s series %s",
            cursor.rowcount, series_type.value, series_id,
        )
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Profiles (read by the materializer)
# ---------------------------------------------------------------------------


class ProfileDB(_SQLiteDB):
    """SQLite-backed family member directory."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id            TEXT PRIMARY KEY,
                    family_id     TEXT NOT NULL,
                    display_name  TEXT NOT NULL,
                    color         TEXT NOT NULL DEFAULT ''
                )
            """)
        logger.debug("Profiles table initialized at %s", self._db_path)

    def add_profile(
        self, family_id: str, display_name: str, color: str = "", profile_id: str | None = None,
    ) -> Profile:
        profile = Profile(
            id=profile_id or str(uuid.uuid4()),
            family_id=family_id,
            display_name=display_name,
            color=color,
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO profiles (id, family_id, display_name, color) VALUES (?, ?, ?, ?)",
                (profile.id, family_id, display_name, color),
            )
        logger.info("Profile added: %s '%s'", profile.id, display_name)
        return profile

    def get_profiles(self, profile_ids: list[str]) -> dict[str, Profile]:
        """Look up several profiles at once; unknown ids are left out."""
        if not profile_ids:
            return {}
        placeholders = ", ".join("?" for _ in profile_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM profiles WHERE id IN ({placeholders})", list(profile_ids),
            ).fetchall()
        return {
            r["id"]: Profile(
                id=r["id"], family_id=r["family_id"],
                display_name=r["display_name"], color=r["color"],
            )
            for r in rows
        }


# ---------------------------------------------------------------------------
# Legacy events (pre-series recurrence, read by the migration helper)
# ---------------------------------------------------------------------------


class LegacyEventDB(_SQLiteDB):
    """The old events table, where recurrence lived inside recurrence_options."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id                  TEXT    PRIMARY KEY,
                    family_id           TEXT    NOT NULL,
                    created_by          TEXT    NOT NULL DEFAULT '',
                    title               TEXT    NOT NULL,
                    description         TEXT    NOT NULL DEFAULT '',
                    location            TEXT    NOT NULL DEFAULT '',
                    start_date          TEXT    NOT NULL,
                    end_date            TEXT    NOT NULL,
                    is_all_day          INTEGER NOT NULL DEFAULT 0,
                    recurrence_options  TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_attendees (
                    event_id    TEXT NOT NULL,
                    profile_id  TEXT NOT NULL,
                    PRIMARY KEY (event_id, profile_id)
                )
            """)
            _add_missing_columns(
                conn, "events", {"migrated_to_series": "INTEGER NOT NULL DEFAULT 0"},
            )
        logger.debug("Legacy events table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> LegacyEvent:
        return LegacyEvent(
            id=row["id"],
            family_id=row["family_id"],
            created_by=row["created_by"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            start_date=datetime.fromisoformat(row["start_date"]),
            end_date=datetime.fromisoformat(row["end_date"]),
            is_all_day=bool(row["is_all_day"]),
            recurrence_options=(
                json.loads(row["recurrence_options"]) if row["recurrence_options"] else None
            ),
            migrated_to_series=bool(row["migrated_to_series"]),
        )

    def add_event(self, event: LegacyEvent, attendees: list[str] | None = None) -> LegacyEvent:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO events
                    (id, family_id, created_by, title, description, location,
                     start_date, end_date, is_all_day, recurrence_options, migrated_to_series)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id, event.family_id, event.created_by, event.title,
                    event.description, event.location,
                    event.start_date.isoformat(), event.end_date.isoformat(),
                    int(event.is_all_day),
                    json.dumps(event.recurrence_options) if event.recurrence_options else None,
                    int(event.migrated_to_series),
                ),
            )
            conn.executemany(
                "INSERT INTO event_attendees (event_id, profile_id) VALUES (?, ?)",
                [(event.id, pid) for pid in attendees or []],
            )
        return event

    def get_event(self, event_id: str) -> LegacyEvent | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM events WHERE id = ?", (event_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def list_unmigrated(self, family_id: str) -> list[LegacyEvent]:
        """Events with embedded recurrence that have not been migrated yet."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM events
                WHERE family_id = ?
                  AND recurrence_options IS NOT NULL
                  AND migrated_to_series = 0
                ORDER BY start_date
                """,
                (family_id,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_attendees(self, event_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT profile_id FROM event_attendees WHERE event_id = ? ORDER BY profile_id",
                (event_id,),
            ).fetchall()
        return [r["profile_id"] for r in rows]

    def mark_migrated(self, event_id: str, description: str) -> bool:
        """Flag a legacy event as migrated, keeping the row as an annotated artifact."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE events SET migrated_to_series = 1, description = ? WHERE id = ?",
                (description, event_id),
            )
        marked = cursor.rowcount > 0
        if marked:
            logger.info("Legacy event %s marked as migrated", event_id)
        return marked
