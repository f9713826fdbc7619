"""Shared test fixtures and configuration.

Sets environment variables before any familyhub import so the settings
singleton is predictable, and provides temp-file SQLite stores.
"""

import os

# Patch env vars BEFORE any familyhub imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("MAX_INSTANCES", "1000")
os.environ.setdefault("DEFAULT_WINDOW_DAYS", "30")
os.environ.setdefault("GENERATOR_STRATEGY", "rrule")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_familyhub.db")


@pytest.fixture
def series_db(tmp_db_path):
    from familyhub.data.db import SeriesDB
    return SeriesDB(db_path=tmp_db_path)


@pytest.fixture
def exception_db(tmp_db_path):
    from familyhub.data.db import ExceptionDB
    return ExceptionDB(db_path=tmp_db_path)


@pytest.fixture
def profile_db(tmp_db_path):
    from familyhub.data.db import ProfileDB
    return ProfileDB(db_path=tmp_db_path)


@pytest.fixture
def legacy_db(tmp_db_path):
    from familyhub.data.db import LegacyEventDB
    return LegacyEventDB(db_path=tmp_db_path)


@pytest.fixture
def series_store(series_db):
    from familyhub.adapters.sqlite_store import SqliteSeriesStore
    return SqliteSeriesStore(series_db)


@pytest.fixture
def exception_store(exception_db):
    from familyhub.adapters.sqlite_store import SqliteExceptionStore
    return SqliteExceptionStore(exception_db)


@pytest.fixture
def profile_directory(profile_db):
    from familyhub.adapters.sqlite_store import SqliteProfileDirectory
    return SqliteProfileDirectory(profile_db)


@pytest.fixture
def legacy_store(legacy_db):
    from familyhub.adapters.sqlite_store import SqliteLegacyEventStore
    return SqliteLegacyEventStore(legacy_db)


@pytest.fixture
def notifier():
    from familyhub.adapters.callback_notifier import CallbackNotifier
    return CallbackNotifier()


@pytest.fixture
def service(series_store, exception_store, notifier):
    """A SeriesService over real SQLite stores."""
    from familyhub.core.series_service import SeriesService
    return SeriesService(series_store, exception_store, notifier)
