"""Store ports — abstract persistence for series, exceptions and legacy events.

Core modules depend on these protocols, never on a specific database.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Protocol

from familyhub.data.models import (
    ExceptionType,
    LegacyEvent,
    RecurrenceException,
    Series,
    SeriesType,
)


class PersistenceError(Exception):
    """Raised when any store operation fails."""


class SeriesNotFoundError(PersistenceError):
    """Raised when a series id does not resolve to a stored row."""

    def __init__(self, series_type: SeriesType, series_id: str) -> None:
        self.series_type = series_type
        self.series_id = series_id
        super().__init__(f"{series_type.value} series {series_id} not found")


class SeriesStore(Protocol):
    """Task and event series persistence."""

    async def get_series(self, series_type: SeriesType, series_id: str) -> Series | None: ...

    async def insert_series(self, series: Series) -> Series: ...

    async def update_series(self, series: Series) -> Series: ...

    async def delete_series(self, series_type: SeriesType, series_id: str) -> None: ...

    async def list_series(
        self, family_id: str, series_type: SeriesType, active_only: bool = True,
    ) -> list[Series]: ...


class ExceptionStore(Protocol):
    """Per-date recurrence exceptions, unique on (series_id, series_type, date)."""

    async def upsert_exception(
        self,
        series_id: str,
        series_type: SeriesType,
        exception_date: date,
        exception_type: ExceptionType,
        override_data: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> RecurrenceException: ...

    async def get_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> RecurrenceException | None: ...

    async def list_exceptions(
        self, series_id: str, series_type: SeriesType,
    ) -> list[RecurrenceException]: ...

    async def delete_exception(
        self, series_id: str, series_type: SeriesType, exception_date: date,
    ) -> bool: ...

    async def delete_exceptions_for_series(
        self, series_id: str, series_type: SeriesType,
    ) -> int: ...


class LegacyEventStore(Protocol):
    """Read/flag access to the pre-series events table."""

    async def list_unmigrated(self, family_id: str) -> list[LegacyEvent]: ...

    async def get_attendees(self, event_id: str) -> list[str]: ...

    async def mark_migrated(self, event_id: str, description: str) -> None: ...
