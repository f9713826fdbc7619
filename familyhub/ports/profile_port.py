"""Profile port — resolves family member ids for display."""

from __future__ import annotations

from typing import Protocol

from familyhub.data.models import Profile


class ProfileDirectory(Protocol):
    """Abstract profile lookup used by the materializer."""

    async def get_profiles(self, profile_ids: list[str]) -> dict[str, Profile]: ...
