"""Remote calendar synchronization and calendar state management - agendum_lite.

``CalendarState`` holds immutable snapshots of the calendars, the main
calendar id and the normalization rules; every change swaps in a new
snapshot. ``RemoteSyncCoordinator`` imports calendars, refreshes remote
ones (manual or scheduled) and records refresh failures on the calendar
instead of raising them.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from ..calendar.lite_datetime_utils import now_utc
from ..calendar.parse_diagnostics import build_parser_fatal_message, build_parser_warning_message
from ..config_manager import get_config_value
from ..exceptions import ParserFatalError
from ..lite_models import Calendar, NormalizationRules, NormalizedEvent, ParseResult, RemoteSource
from .lite_fetcher import RemoteCalendarFetcher
from .parser_worker import IcsParserClient
from .persistence import CalendarPersistence
from .remote_urls import (
    build_fetch_url,
    calendar_name_from_url,
    is_refresh_due,
    manual_refresh_wait,
    parse_calendar_url,
)

logger = logging.getLogger(__name__)

CALENDAR_COLORS = (
    "#3b82f6",
    "#ef4444",
    "#10b981",
    "#f59e0b",
    "#8b5cf6",
    "#ec4899",
    "#6366f1",
)

REFRESH_FAILED_MESSAGE = "Refresh failed"


class AsyncParser(Protocol):
    async def parse(self, content: str) -> ParseResult: ...


@dataclass(frozen=True)
class FetchedCalendar:
    """Events obtained from a remote source plus the optional parser warning."""

    events: tuple[NormalizedEvent, ...]
    warning: Optional[str] = None


@dataclass(frozen=True)
class ImportResult:
    """Calendar created by an import and the parser warning, if any."""

    calendar: Calendar
    warning: Optional[str] = None


class CalendarState:
    """Copy-on-write holder of the calendar collection, main id and rules."""

    def __init__(
        self,
        calendars: Sequence[Calendar] = (),
        main_calendar_id: Optional[str] = None,
        rules: Optional[NormalizationRules] = None,
    ) -> None:
        self._calendars: tuple[Calendar, ...] = tuple(calendars)
        self._main_calendar_id = main_calendar_id
        self._rules = rules or NormalizationRules()

    @property
    def calendars(self) -> tuple[Calendar, ...]:
        return self._calendars

    @property
    def main_calendar_id(self) -> Optional[str]:
        return self._main_calendar_id

    @property
    def rules(self) -> NormalizationRules:
        return self._rules

    def get(self, calendar_id: str) -> Optional[Calendar]:
        for calendar in self._calendars:
            if calendar.id == calendar_id:
                return calendar
        return None

    def replace(
        self,
        calendars: Sequence[Calendar],
        main_calendar_id: Optional[str] = None,
        rules: Optional[NormalizationRules] = None,
    ) -> None:
        """Swap in a whole new snapshot (used when loading persisted state)."""
        self._calendars = tuple(calendars)
        self._main_calendar_id = main_calendar_id
        if rules is not None:
            self._rules = rules

    def add_calendar(self, calendar: Calendar) -> None:
        self._calendars = (*self._calendars, calendar)

    def remove_calendar(self, calendar_id: str) -> Optional[Calendar]:
        removed = self.get(calendar_id)
        if removed is None:
            return None
        self._calendars = tuple(c for c in self._calendars if c.id != calendar_id)
        if self._main_calendar_id == calendar_id:
            self._main_calendar_id = None
        return removed

    def update_calendar(
        self, calendar_id: str, update: Callable[[Calendar], Calendar]
    ) -> Optional[Calendar]:
        """Apply ``update`` to the calendar in the latest snapshot.

        Returns:
            The updated calendar, or None if the id is unknown
        """
        updated: Optional[Calendar] = None
        calendars = []
        for calendar in self._calendars:
            if calendar.id == calendar_id:
                updated = update(calendar)
                calendars.append(updated)
            else:
                calendars.append(calendar)
        if updated is not None:
            self._calendars = tuple(calendars)
        return updated

    def update_remote(
        self, calendar_id: str, update: Callable[[RemoteSource], RemoteSource]
    ) -> Optional[Calendar]:
        """Apply ``update`` to the remote source of a calendar, if it has one."""

        def apply(calendar: Calendar) -> Calendar:
            if calendar.remote is None:
                return calendar
            return calendar.model_copy(update={"remote": update(calendar.remote)})

        return self.update_calendar(calendar_id, apply)

    def set_main_calendar(self, calendar_id: Optional[str]) -> None:
        self._main_calendar_id = calendar_id

    def set_rules(self, rules: NormalizationRules) -> None:
        self._rules = rules


class RemoteSyncCoordinator:
    """Imports calendars and keeps remote ones in sync."""

    def __init__(
        self,
        state: Optional[CalendarState] = None,
        settings: Any = None,
        parser: Optional[AsyncParser] = None,
        fetcher: Optional[RemoteCalendarFetcher] = None,
        persistence: Optional[CalendarPersistence] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize the coordinator.

        Args:
            state: Calendar state to operate on (a fresh empty one by default)
            settings: Config object or dict (proxy, language, intervals)
            parser: Object with ``async parse(text) -> ParseResult``
            fetcher: Remote fetcher (built from settings by default)
            persistence: Where state changes are saved (None disables saving)
            clock: Source of the current aware time
        """
        self.state = state or CalendarState()
        self.settings = settings
        self.parser: AsyncParser = parser or IcsParserClient()
        self.fetcher = fetcher or RemoteCalendarFetcher(settings)
        self.persistence = persistence
        self._clock = clock
        self._refreshing: set[str] = set()
        self._save_lock = asyncio.Lock()

    # Settings

    def _setting(self, key: str, default: Any) -> Any:
        value = get_config_value(self.settings, key, default) if self.settings is not None else None
        return default if value is None else value

    @property
    def lang(self) -> str:
        return str(self._setting("lang", "fr"))

    @property
    def proxy_base_url(self) -> Optional[str]:
        return self._setting("proxy_base_url", None)

    @property
    def auto_refresh_interval(self) -> timedelta:
        return timedelta(seconds=int(self._setting("auto_refresh_interval_seconds", 86400)))

    @property
    def manual_refresh_cooldown(self) -> timedelta:
        return timedelta(seconds=int(self._setting("manual_refresh_cooldown_seconds", 3600)))

    @property
    def refresh_tick_seconds(self) -> float:
        return float(self._setting("refresh_tick_seconds", 3600))

    def is_refreshing(self, calendar_id: str) -> bool:
        return calendar_id in self._refreshing

    def close(self) -> None:
        """Stop the parser worker, if the parser has one."""
        terminate = getattr(self.parser, "terminate", None)
        if callable(terminate):
            terminate()

    # Persistence

    async def load(self) -> None:
        """Replace the state with what persistence holds."""
        if self.persistence is None:
            return
        persisted = await self.persistence.load_state()
        self.state.replace(
            persisted.calendars, persisted.main_calendar_id, persisted.normalization_rules
        )
        logger.info("Restored %d calendars", len(persisted.calendars))

    async def _save_calendars(self, include_main: bool = False) -> None:
        """Write the current calendars, one save at a time.

        The snapshot is taken once the lock is held, so the last save to run
        always carries the latest state even when concurrent refreshes finish
        out of order.
        """
        if self.persistence is None:
            return
        async with self._save_lock:
            main_id = (self.state.main_calendar_id or "") if include_main else None
            await self.persistence.save_calendars(self.state.calendars, main_id)

    # Fetching and importing

    async def fetch_remote_calendar_events(self, source_url: str) -> FetchedCalendar:
        """Fetch and parse a remote calendar without touching the state.

        Raises:
            InvalidCalendarUrlError: Malformed source URL
            ProxyNotConfiguredError: Proxied source without a proxy base URL
            RemoteFetchError: Network failure or non-2xx status
            ParserFatalError: Parser errors and no usable events
            ParserError: Parser failure
        """
        target_url = build_fetch_url(source_url, self.proxy_base_url)
        text = await self.fetcher.fetch_text(target_url)
        result = await self.parser.parse(text)
        if result.is_fatal:
            message = build_parser_fatal_message(result.diagnostics, self.lang, "calendar")
            raise ParserFatalError(message, result.diagnostics)
        return FetchedCalendar(
            events=result.events,
            warning=build_parser_warning_message(result.diagnostics, self.lang),
        )

    def _new_calendar_id(self, now: datetime) -> str:
        candidate = int(now.timestamp() * 1000)
        while self.state.get(str(candidate)) is not None:
            candidate += 1
        return str(candidate)

    async def add_calendar(
        self,
        name: str,
        events: Sequence[NormalizedEvent],
        include_in_stats: bool = True,
        source_url: Optional[str] = None,
        synced_at: Optional[datetime] = None,
        warning: Optional[str] = None,
    ) -> Calendar:
        """Append a new calendar; the first one becomes visible and main."""
        now = self._clock()
        is_first = len(self.state.calendars) == 0
        remote = None
        if source_url:
            synced = synced_at or now
            remote = RemoteSource(
                source_url=source_url,
                last_synced_at=synced,
                last_attempt_at=synced,
                last_warning=warning,
            )
        calendar = Calendar(
            id=self._new_calendar_id(now),
            name=name,
            color=CALENDAR_COLORS[len(self.state.calendars) % len(CALENDAR_COLORS)],
            visible=is_first,
            include_in_stats=include_in_stats,
            events=tuple(events),
            remote=remote,
        )
        self.state.add_calendar(calendar)
        if is_first:
            self.state.set_main_calendar(calendar.id)
        await self._save_calendars(include_main=is_first)
        logger.info("Imported calendar %r with %d events", calendar.name, len(calendar.events))
        return calendar

    async def import_from_url(
        self, url: str, name: str = "", include_in_stats: bool = True
    ) -> ImportResult:
        """Fetch, parse and add a remote calendar. Errors propagate to the caller."""
        parse_calendar_url(url)
        fetched = await self.fetch_remote_calendar_events(url)
        calendar_name = name.strip() or calendar_name_from_url(url)
        calendar = await self.add_calendar(
            calendar_name,
            fetched.events,
            include_in_stats,
            source_url=url.strip(),
            synced_at=self._clock(),
            warning=fetched.warning,
        )
        return ImportResult(calendar=calendar, warning=fetched.warning)

    async def import_from_text(
        self, content: str, name: str, include_in_stats: bool = True
    ) -> ImportResult:
        """Parse ICS text (e.g. a local file) and add it as a calendar.

        Raises:
            ParserFatalError: Parser errors and no usable events
        """
        result = await self.parser.parse(content)
        if result.is_fatal:
            message = build_parser_fatal_message(result.diagnostics, self.lang, "file")
            raise ParserFatalError(message, result.diagnostics)
        warning = build_parser_warning_message(result.diagnostics, self.lang)
        calendar = await self.add_calendar(name.strip() or "Calendar", result.events, include_in_stats)
        return ImportResult(calendar=calendar, warning=warning)

    # Refresh

    async def refresh_calendar(self, calendar_id: str, is_manual: bool = False) -> bool:
        """Refresh one remote calendar.

        Silently skipped when the calendar has no remote source, a refresh of
        it is already running, or (manual only) the cooldown has not elapsed.
        Failures are recorded on ``remote.last_error``; prior events are kept.

        Returns:
            True if a refresh attempt was made
        """
        calendar = self.state.get(calendar_id)
        if calendar is None or calendar.remote is None or not calendar.remote.source_url:
            return False
        if calendar_id in self._refreshing:
            logger.debug("Refresh of %s already in flight; skipping", calendar_id)
            return False

        now = self._clock()
        if is_manual:
            wait = manual_refresh_wait(calendar.remote, now, self.manual_refresh_cooldown)
            if wait > timedelta(0):
                logger.info(
                    "Manual refresh of %s in cooldown for %d more seconds",
                    calendar_id,
                    int(wait.total_seconds()),
                )
                return False

        self._refreshing.add(calendar_id)
        try:
            mark: dict[str, Any] = {"last_attempt_at": now}
            if is_manual:
                mark["last_manual_refresh_at"] = now
            self.state.update_remote(calendar_id, lambda r: r.model_copy(update=mark))
            await self._save_calendars()

            try:
                fetched = await self.fetch_remote_calendar_events(calendar.remote.source_url)
            except Exception as exc:
                message = str(exc) or REFRESH_FAILED_MESSAGE
                logger.warning("Refresh of calendar %s failed: %s", calendar_id, message)
                self.state.update_remote(
                    calendar_id,
                    lambda r: r.model_copy(update={"last_error": message, "last_warning": None}),
                )
            else:
                synced_at = self._clock()
                remote_update = {
                    "last_synced_at": synced_at,
                    "last_attempt_at": synced_at,
                    "last_error": None,
                    "last_warning": fetched.warning,
                }
                self.state.update_calendar(
                    calendar_id,
                    lambda c: c.model_copy(
                        update={
                            "events": fetched.events,
                            "remote": c.remote.model_copy(update=remote_update)
                            if c.remote is not None
                            else None,
                        }
                    ),
                )
                logger.info(
                    "Refreshed calendar %s (%d events)", calendar_id, len(fetched.events)
                )
            await self._save_calendars()
        finally:
            self._refreshing.discard(calendar_id)
        return True

    def due_calendars(self, now: Optional[datetime] = None) -> list[str]:
        """Ids of remote calendars whose last attempt is older than the auto-refresh interval."""
        current = now or self._clock()
        return [
            c.id
            for c in self.state.calendars
            if is_refresh_due(c.remote, current, self.auto_refresh_interval)
        ]

    async def refresh_due_calendars(self) -> dict[str, bool]:
        """Refresh every due calendar concurrently and independently.

        Returns:
            Mapping of calendar id to whether an attempt was made
        """
        due = self.due_calendars()
        if not due:
            return {}
        logger.debug("Auto-refreshing %d due calendars", len(due))
        results = await asyncio.gather(
            *(self.refresh_calendar(calendar_id, is_manual=False) for calendar_id in due),
            return_exceptions=True,
        )
        outcome: dict[str, bool] = {}
        for calendar_id, result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error("Auto-refresh of %s raised: %s", calendar_id, result)
                outcome[calendar_id] = False
            else:
                outcome[calendar_id] = result
        return outcome

    async def run_auto_refresh(self, stop_event: asyncio.Event) -> None:
        """Background refresher: immediate scan then one scan per tick until stopped."""
        tick = self.refresh_tick_seconds
        logger.info("Starting auto-refresh loop (tick %d seconds)", int(tick))
        while not stop_event.is_set():
            try:
                await self.refresh_due_calendars()
            except Exception:
                logger.exception("Auto-refresh scan failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=tick)
            except asyncio.TimeoutError:
                continue
        logger.info("Auto-refresh loop stopped")

    # Calendar management

    async def remove_calendar(self, calendar_id: str) -> bool:
        was_main = self.state.main_calendar_id == calendar_id
        removed = self.state.remove_calendar(calendar_id)
        if removed is None:
            return False
        await self._save_calendars(include_main=was_main)
        logger.info("Removed calendar %r", removed.name)
        return True

    async def toggle_visibility(self, calendar_id: str) -> Optional[Calendar]:
        updated = self.state.update_calendar(
            calendar_id, lambda c: c.model_copy(update={"visible": not c.visible})
        )
        if updated is not None:
            await self._save_calendars()
        return updated

    async def toggle_stats(self, calendar_id: str) -> Optional[Calendar]:
        updated = self.state.update_calendar(
            calendar_id,
            lambda c: c.model_copy(update={"include_in_stats": not c.include_in_stats}),
        )
        if updated is not None:
            await self._save_calendars()
        return updated

    async def rename_calendar(self, calendar_id: str, name: str) -> Optional[Calendar]:
        updated = self.state.update_calendar(
            calendar_id, lambda c: c.model_copy(update={"name": name})
        )
        if updated is not None:
            await self._save_calendars()
        return updated

    async def set_main_calendar(self, calendar_id: Optional[str]) -> None:
        """Designate the main calendar (None clears it)."""
        if calendar_id is not None and self.state.get(calendar_id) is None:
            raise KeyError(calendar_id)
        self.state.set_main_calendar(calendar_id)
        await self._save_calendars(include_main=True)

    async def update_rules(self, rules: NormalizationRules) -> None:
        self.state.set_rules(rules)
        if self.persistence is not None:
            async with self._save_lock:
                await self.persistence.save_rules(self.state.rules)

    async def purge_all(self) -> None:
        """Forget every calendar and rule, in memory and on disk."""
        self.state.replace((), None, NormalizationRules())
        if self.persistence is not None:
            async with self._save_lock:
                await self.persistence.purge()
        logger.info("Purged all calendars and rules")
