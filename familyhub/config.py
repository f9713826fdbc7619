"""
FamilyHub — Centralized configuration.

Loads all settings from .env and validates them.
Every module that needs a tunable reads it from here.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from familyhub/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/familyhub.db"

    # Instance generation
    MAX_INSTANCES: int = 1000        # hard cap per generate call
    DEFAULT_WINDOW_DAYS: int = 30    # look-ahead used by main.py
    GENERATOR_STRATEGY: str = "rrule"  # "rrule" | "stepping" (primary strategy)

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("MAX_INSTANCES", "DEFAULT_WINDOW_DAYS", mode="before")
    @classmethod
    def parse_positive(cls, v: str | int) -> int:
        value = int(v)
        if value < 1:
            raise ValueError(f"must be a positive integer, got {value}")
        return value

    @field_validator("GENERATOR_STRATEGY", mode="before")
    @classmethod
    def parse_strategy(cls, v: str) -> str:
        strategy = (v or "rrule").strip().lower()
        if strategy not in ("rrule", "stepping"):
            raise ValueError(f"unknown generator strategy {strategy!r}")
        return strategy


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/familyhub.db"),
        MAX_INSTANCES=os.getenv("MAX_INSTANCES", "1000"),
        DEFAULT_WINDOW_DAYS=os.getenv("DEFAULT_WINDOW_DAYS", "30"),
        GENERATOR_STRATEGY=os.getenv("GENERATOR_STRATEGY", "rrule"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from familyhub.config import settings
settings = _load_settings()
