"""Notification port — tells interested views that a series changed.

Core modules depend on this protocol, never on a specific UI or messaging layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from familyhub.data.models import SeriesType


@dataclass
class SeriesChange:
    """What changed: created, updated, split, exception or deleted."""

    action: str
    series_type: SeriesType
    series_id: str
    family_id: str = ""
    related_ids: list[str] = field(default_factory=list)


class ChangeNotifier(Protocol):
    """Abstract change-notification interface used by the series service."""

    async def series_changed(self, change: SeriesChange) -> None: ...
