"""
FamilyHub — Entry Point.

    python main.py upcoming <family_id> [--days N]
    python main.py skip <task|event> <series_id> <YYYY-MM-DD>
    python main.py restore <task|event> <series_id> <YYYY-MM-DD>
    python main.py export <task|event> <series_id> [--output FILE]
    python main.py migrate <family_id> [--check]

All commands share one SQLite database (DATABASE_PATH).
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

from familyhub.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from familyhub.adapters.callback_notifier import CallbackNotifier
from familyhub.adapters.ics_export import series_to_ics
from familyhub.adapters.sqlite_store import (
    SqliteExceptionStore,
    SqliteLegacyEventStore,
    SqliteProfileDirectory,
    SqliteSeriesStore,
)
from familyhub.core.materializer import InstanceMaterializer
from familyhub.core.migration import EventMigrator
from familyhub.core.series_service import SeriesService
from familyhub.data.models import SeriesType
from familyhub.ports.notification_port import SeriesChange
from familyhub.ports.store_port import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class App:
    service: SeriesService
    materializer: InstanceMaterializer
    migrator: EventMigrator
    notifier: CallbackNotifier


def build_app() -> App:
    """Wire the SQLite stores, notifier and core services together."""
    series_store = SqliteSeriesStore()
    exception_store = SqliteExceptionStore()
    notifier = CallbackNotifier()
    service = SeriesService(series_store, exception_store, notifier)
    return App(
        service=service,
        materializer=InstanceMaterializer(series_store, exception_store, SqliteProfileDirectory()),
        migrator=EventMigrator(SqliteLegacyEventStore(), service),
        notifier=notifier,
    )


def _report_change(change: SeriesChange) -> None:
    print(f"  [{change.action}] {change.series_type.value} series {change.series_id}")


async def show_upcoming(app: App, family_id: str, days: int) -> None:
    start = date.today()
    end = start + timedelta(days=days - 1)

    tasks = await app.materializer.task_instances(family_id, start, end)
    events = await app.materializer.event_instances(family_id, start, end)
    logger.info("Found %d task(s) and %d event(s) for %s", len(tasks), len(events), family_id)

    print(f"Upcoming for family {family_id} ({start} to {end})")
    print("\nEvents:")
    for ev in events:
        when = f"{ev.start:%Y-%m-%d} all day" if ev.is_all_day else f"{ev.start:%Y-%m-%d %H:%M}-{ev.end:%H:%M}"
        names = ", ".join(p.display_name for p in ev.attendees)
        print(f"  {when}  {ev.title}" + (f"  ({names})" if names else ""))
    print("\nTasks:")
    for task in tasks:
        names = ", ".join(p.display_name for p in task.assignees)
        print(f"  {task.due_date}  {task.title} [{task.points} pts]" + (f"  ({names})" if names else ""))


async def skip(app: App, series_type: SeriesType, series_id: str, day: date) -> None:
    await app.service.skip_occurrence(series_id, series_type, day)
    print(f"Skipped {day} of {series_type.value} series {series_id}")


async def restore(app: App, series_type: SeriesType, series_id: str, day: date) -> None:
    removed = await app.service.restore_occurrence(series_id, series_type, day)
    print(f"Restored {day}" if removed else f"Nothing to restore on {day}")


async def export(app: App, series_type: SeriesType, series_id: str, output: str | None) -> None:
    series = await app.service.get_series(series_id, series_type)
    if series is None:
        print(f"No {series_type.value} series {series_id}")
        sys.exit(1)
    text = series_to_ics(series)
    if output:
        Path(output).write_text(text, encoding="utf-8")
        print(f"Wrote {output}")
    else:
        print(text)


async def migrate(app: App, family_id: str, check_only: bool) -> None:
    if check_only:
        status = await app.migrator.check_status(family_id)
        print(f"{status.count} legacy recurring event(s) awaiting migration")
        return
    stats = await app.migrator.migrate_family(family_id)
    print(
        f"Migrated {stats.migrated} of {stats.total} "
        f"({stats.skipped} skipped, {stats.errors} error(s))"
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="familyhub", description="FamilyHub recurring series")
    sub = parser.add_subparsers(dest="command", required=True)

    upcoming = sub.add_parser("upcoming", help="List upcoming task and event occurrences")
    upcoming.add_argument("family_id")
    upcoming.add_argument("--days", type=int, default=settings.DEFAULT_WINDOW_DAYS)

    for name, help_text in (("skip", "Skip one occurrence"), ("restore", "Undo a skip or override")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("series_type", choices=[t.value for t in SeriesType])
        cmd.add_argument("series_id")
        cmd.add_argument("date", type=date.fromisoformat)

    exp = sub.add_parser("export", help="Print a series as iCalendar")
    exp.add_argument("series_type", choices=[t.value for t in SeriesType])
    exp.add_argument("series_id")
    exp.add_argument("--output")

    mig = sub.add_parser("migrate", help="Move legacy recurring events onto series")
    mig.add_argument("family_id")
    mig.add_argument("--check", action="store_true", help="Only report how many are pending")

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, app: App) -> None:
    if args.command == "upcoming":
        await show_upcoming(app, args.family_id, args.days)
    elif args.command == "skip":
        await skip(app, SeriesType(args.series_type), args.series_id, args.date)
    elif args.command == "restore":
        await restore(app, SeriesType(args.series_type), args.series_id, args.date)
    elif args.command == "export":
        await export(app, SeriesType(args.series_type), args.series_id, args.output)
    elif args.command == "migrate":
        await migrate(app, args.family_id, args.check)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    app = build_app()
    app.notifier.subscribe(_report_change)
    try:
        asyncio.run(run(args, app))
    except PersistenceError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
