"""Command-line entry for agendum_lite.

A thin shell over ``RemoteSyncCoordinator`` and the view derivation
functions: import calendars, refresh them, keep them in sync in the
foreground, list the filtered events with their session labels and total
the teaching service hours.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import date, time, tzinfo
from pathlib import Path
from typing import Any, NoReturn, Optional

import yaml

from . import _init_logging
from .calendar.lite_datetime_utils import resolve_timezone, to_local
from .calendar.lite_parser import make_parser
from .config_loader import Config, load_settings
from .domain.enrichment import enrich_events
from .domain.event_filter import derive_views
from .domain.service_stats import (
    HoursBreakdown,
    ServiceScope,
    summarize_service_hours,
    teacher_breakdowns,
)
from .domain.session_ordinals import compute_session_ordinals
from .exceptions import AgendumError
from .lite_logging import configure_lite_logging
from .lite_models import EnrichedEvent, FilterState, SourceScope
from .sync.http_client import close_all_clients
from .sync.parser_worker import IcsParserClient
from .sync.persistence import (
    DB_NAME,
    CalendarPersistence,
    DirectoryStringStore,
    JsonFileKeyValueStore,
    namespaced_db_name,
    sanitize_namespace,
)
from .sync.remote_sync import RemoteSyncCoordinator

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the agendum CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="agendum",
        description="Agendum Lite - university timetable aggregation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  agendum import-url https://example.org/l3.ics --name "L3 Info"
  agendum refresh --manual
  agendum events --from 2025-01-06 --to 2025-01-10 --source all
  agendum stats --scope done --teacher "Jane Doe"
  agendum watch
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="YAML config file (default ./agendum.yaml)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    import_url = sub.add_parser("import-url", help="Import a remote ICS calendar")
    import_url.add_argument("url")
    import_url.add_argument("--name", default="")
    import_url.add_argument("--no-stats", action="store_true", help="Exclude from service totals")

    import_file = sub.add_parser("import-file", help="Import a local ICS file")
    import_file.add_argument("path", type=Path)
    import_file.add_argument("--name", default="")
    import_file.add_argument("--no-stats", action="store_true", help="Exclude from service totals")

    refresh = sub.add_parser("refresh", help="Refresh remote calendars")
    refresh.add_argument("--id", dest="calendar_id", help="Only this calendar (default: all remote)")
    refresh.add_argument(
        "--manual", action="store_true", help="Manual refresh (subject to the cooldown)"
    )

    sub.add_parser("watch", help="Refresh due calendars until interrupted")
    sub.add_parser("calendars", help="List calendars and their sync status")

    remove = sub.add_parser("remove", help="Remove a calendar")
    remove.add_argument("calendar_id")

    events = sub.add_parser("events", help="List filtered events")
    events.add_argument("--from", dest="date_start", type=date.fromisoformat)
    events.add_argument("--to", dest="date_end", type=date.fromisoformat)
    events.add_argument("--start-time", type=time.fromisoformat)
    events.add_argument("--end-time", type=time.fromisoformat)
    events.add_argument(
        "--days", default="", help="Comma-separated ISO weekdays, 1=Monday (e.g. 1,2,3)"
    )
    events.add_argument(
        "--source", choices=[s.value for s in SourceScope], default=SourceScope.SERVICE.value
    )
    events.add_argument("--search", default="", help="Search subject, type and teacher")

    stats = sub.add_parser("stats", help="Service hours per bucket, teacher and subject")
    stats.add_argument(
        "--scope", choices=[s.value for s in ServiceScope], default=ServiceScope.TOTAL.value
    )
    stats.add_argument("--teacher", default="", help="Restrict to one teacher")

    return parser


def _parse_days(raw: str) -> tuple[int, ...]:
    return tuple(int(part) for part in raw.split(",") if part.strip())


def build_coordinator(settings: Config, tz: Optional[tzinfo]) -> RemoteSyncCoordinator:
    """Wire the coordinator with on-disk persistence and the background parser."""
    namespace = sanitize_namespace(settings.storage_namespace)
    data_dir = Path(settings.data_dir).expanduser()
    persistence = CalendarPersistence(
        JsonFileKeyValueStore(data_dir / f"{namespaced_db_name(DB_NAME, namespace)}.json"),
        DirectoryStringStore(data_dir / "fallback"),
        namespace=namespace,
    )
    return RemoteSyncCoordinator(
        settings=settings,
        parser=IcsParserClient(parse_fn=make_parser(tz)),
        persistence=persistence,
    )


def _format_event(event: EnrichedEvent, label: Optional[str], tz: Optional[tzinfo]) -> str:
    if event.start_date is not None and event.end_date is not None:
        start = to_local(event.start_date, tz)
        end = to_local(event.end_date, tz)
        when = f"{start:%Y-%m-%d %a %H:%M}-{end:%H:%M}"
    else:
        when = event.start_iso or "?"
    parts = [when, f"{label or event.type_:<5}", event.subject or event.summary]
    if event.extracted_teacher:
        parts.append(f"[{event.extracted_teacher}]")
    if event.location:
        parts.append(f"@ {event.location}")
    parts.append(f"({event.calendar_name})")
    if event.is_duplicate:
        parts.append("*dup")
    return "  ".join(parts)


def _format_hours(hours: HoursBreakdown) -> str:
    return (
        f"CM {hours.cm:g}h  TD {hours.td:g}h  TP {hours.tp:g}h  "
        f"project {hours.project:g}h  meeting {hours.reunion:g}h  exam {hours.exam:g}h  "
        f"other {hours.other:g}h  teaching {hours.total_teaching:g}h  ({hours.count} events)"
    )


async def _watch(coordinator: RemoteSyncCoordinator) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported", sig)
    await coordinator.run_auto_refresh(stop_event)


async def _run_command(args: Any, settings: Config) -> int:
    tz = resolve_timezone(settings.timezone)
    coordinator = build_coordinator(settings, tz)
    try:
        await coordinator.load()
        return await _dispatch(args, coordinator, tz)
    finally:
        coordinator.close()


async def _dispatch(args: Any, coordinator: RemoteSyncCoordinator, tz: Optional[tzinfo]) -> int:
    include_in_stats = not getattr(args, "no_stats", False)

    if args.command == "import-url":
        outcome = await coordinator.import_from_url(args.url, args.name, include_in_stats)
        print(f"Imported {outcome.calendar.name} ({len(outcome.calendar.events)} events)")
        if outcome.warning:
            print(outcome.warning)

    elif args.command == "import-file":
        content = args.path.read_text(encoding="utf-8")
        outcome = await coordinator.import_from_text(
            content, args.name or args.path.stem, include_in_stats
        )
        print(f"Imported {outcome.calendar.name} ({len(outcome.calendar.events)} events)")
        if outcome.warning:
            print(outcome.warning)

    elif args.command == "refresh":
        ids = (
            [args.calendar_id]
            if args.calendar_id
            else [c.id for c in coordinator.state.calendars if c.remote is not None]
        )
        for calendar_id in ids:
            attempted = await coordinator.refresh_calendar(calendar_id, is_manual=args.manual)
            calendar = coordinator.state.get(calendar_id)
            if calendar is None:
                print(f"{calendar_id}: unknown calendar")
            elif not attempted:
                print(f"{calendar.name}: skipped")
            elif calendar.remote is not None and calendar.remote.last_error:
                print(f"{calendar.name}: failed ({calendar.remote.last_error})")
            else:
                print(f"{calendar.name}: {len(calendar.events)} events")

    elif args.command == "watch":
        await _watch(coordinator)

    elif args.command == "calendars":
        for calendar in coordinator.state.calendars:
            flags = "main" if calendar.id == coordinator.state.main_calendar_id else ""
            line = f"{calendar.id}  {calendar.name}  {len(calendar.events)} events {flags}"
            if calendar.remote is not None:
                line += f"  synced={calendar.remote.last_synced_at}"
                if calendar.remote.last_error:
                    line += f"  error={calendar.remote.last_error}"
            print(line.rstrip())

    elif args.command == "remove":
        if not await coordinator.remove_calendar(args.calendar_id):
            print(f"{args.calendar_id}: unknown calendar", file=sys.stderr)
            return 1

    elif args.command == "events":
        filters = FilterState(
            date_start=args.date_start,
            date_end=args.date_end,
            start_time=args.start_time,
            end_time=args.end_time,
            days=_parse_days(args.days),
            source=SourceScope(args.source),
        )
        views = derive_views(
            coordinator.state.calendars,
            coordinator.state.rules,
            filters,
            coordinator.state.main_calendar_id,
            args.search,
            tz,
        )
        listed = views.search_results if args.search else views.filtered_events
        ordinals = compute_session_ordinals(listed, tz)
        for event, info in zip(listed, ordinals):
            print(_format_event(event, info.label if info is not None else None, tz))

    elif args.command == "stats":
        enriched = enrich_events(coordinator.state.calendars, coordinator.state.rules, tz)
        scope = ServiceScope(args.scope)
        teacher = args.teacher or None
        summary = summarize_service_hours(enriched, scope=scope, teacher=teacher)
        print(f"Service ({scope.value}): {_format_hours(summary)}")
        for entry in teacher_breakdowns(enriched, scope=scope, teacher=teacher):
            print(f"{entry.name}: {entry.grand_total:g}h")
            for row in entry.subjects:
                print(f"  {row.subject}: {_format_hours(row.hours)}")

    return 0


async def _run(args: Any) -> int:
    settings = load_settings(args.config)
    configure_lite_logging(debug_mode=args.debug or settings.log_level == "DEBUG")
    try:
        return await _run_command(args, settings)
    finally:
        await close_all_clients()


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the agendum CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)
    _init_logging("DEBUG" if args.debug else None)

    try:
        code = asyncio.run(_run(args))
    except (AgendumError, OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
