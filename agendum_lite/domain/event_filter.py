"""Event filtering and derived views for agendum_lite.

Filters are pure narrowing stages applied in order: source scope, local date
range, time-of-day overlap, then ISO weekday.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import time, tzinfo
from typing import Optional

from ..calendar.lite_datetime_utils import iso_weekday, local_date_key, minutes_of_day
from ..lite_models import (
    Calendar,
    EnrichedEvent,
    FilterState,
    NormalizationRules,
    SourceScope,
    TeacherOption,
)
from .enrichment import TEACHER_PLACEHOLDER, enrich_events

logger = logging.getLogger(__name__)

_EXCLUDED_TEACHER_NAMES = frozenset({TEACHER_PLACEHOLDER, "unknown teacher"})


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def filter_by_source(
    events: Iterable[EnrichedEvent],
    scope: SourceScope,
    main_calendar_id: Optional[str],
) -> list[EnrichedEvent]:
    """Keep the events belonging to the requested source scope."""
    scope = SourceScope(scope)
    if scope is SourceScope.SERVICE:
        return [e for e in events if e.stats_included is not False]
    if scope is SourceScope.MAIN:
        if not main_calendar_id:
            return []
        return [e for e in events if e.calendar_id == main_calendar_id]
    if scope is SourceScope.VISIBLE:
        return [e for e in events if e.is_visible]
    return list(events)


def filter_by_date_range(
    events: Iterable[EnrichedEvent], filters: FilterState, tz: Optional[tzinfo] = None
) -> list[EnrichedEvent]:
    """Inclusive range on the local start date."""
    if filters.date_start is None and filters.date_end is None:
        return list(events)

    kept = []
    for event in events:
        if event.start_date is None:
            continue
        day = local_date_key(event.start_date, tz)
        if filters.date_start is not None and day < filters.date_start:
            continue
        if filters.date_end is not None and day > filters.date_end:
            continue
        kept.append(event)
    return kept


def filter_by_time_window(
    events: Iterable[EnrichedEvent], filters: FilterState, tz: Optional[tzinfo] = None
) -> list[EnrichedEvent]:
    """Overlap test between the event's local time span and the window.

    A single bound acts as an open-ended threshold: only a start bound keeps
    events ending at or after it, only an end bound keeps events starting at
    or before it.
    """
    if filters.start_time is None and filters.end_time is None:
        return list(events)

    window_start = _minutes(filters.start_time) if filters.start_time is not None else None
    window_end = _minutes(filters.end_time) if filters.end_time is not None else None

    kept = []
    for event in events:
        if event.start_date is None or event.end_date is None:
            continue
        event_start = minutes_of_day(event.start_date, tz)
        event_end = minutes_of_day(event.end_date, tz)
        if window_start is not None and event_end < window_start:
            continue
        if window_end is not None and event_start > window_end:
            continue
        kept.append(event)
    return kept


def filter_by_weekday(
    events: Iterable[EnrichedEvent], filters: FilterState, tz: Optional[tzinfo] = None
) -> list[EnrichedEvent]:
    """Keep events whose local start falls on one of the selected ISO weekdays."""
    if not filters.days:
        return list(events)
    days = set(filters.days)
    return [
        e for e in events if e.start_date is not None and iso_weekday(e.start_date, tz) in days
    ]


def apply_filters(
    events: Sequence[EnrichedEvent],
    filters: FilterState,
    main_calendar_id: Optional[str],
    source_override: Optional[SourceScope] = None,
    tz: Optional[tzinfo] = None,
) -> list[EnrichedEvent]:
    """Run the full filter pipeline.

    Args:
        events: Enriched events
        filters: Shared filter state
        main_calendar_id: Currently designated main calendar (None if unset)
        source_override: Scope replacing ``filters.source`` for the first stage only
        tz: Local zone for date/time comparisons

    Returns:
        Events passing every stage, in input order
    """
    scope = source_override if source_override is not None else filters.source
    result = filter_by_source(events, scope, main_calendar_id)
    result = filter_by_date_range(result, filters, tz)
    result = filter_by_time_window(result, filters, tz)
    result = filter_by_weekday(result, filters, tz)
    logger.debug(
        "Filtered %d -> %d events (scope=%s)", len(events), len(result), SourceScope(scope).value
    )
    return result


def service_events(events: Iterable[EnrichedEvent]) -> list[EnrichedEvent]:
    """Events counted toward service totals."""
    return [e for e in events if e.stats_included is not False]


def teacher_options(events: Iterable[EnrichedEvent]) -> list[TeacherOption]:
    """Teachers appearing in service events, most frequent first."""
    counts: Counter[str] = Counter()
    for event in service_events(events):
        for part in event.extracted_teacher.split(","):
            name = part.strip()
            if not name or name.lower() in _EXCLUDED_TEACHER_NAMES:
                continue
            counts[name] += 1
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [TeacherOption(name=name, count=count) for name, count in ordered]


def search_events(events: Iterable[EnrichedEvent], query: str) -> list[EnrichedEvent]:
    """Case-insensitive substring search on subject, type and teacher."""
    needle = (query or "").lower()
    if not needle:
        return []
    return [
        e
        for e in events
        if needle in e.subject.lower()
        or needle in e.type_.lower()
        or needle in e.extracted_teacher.lower()
    ]


@dataclass(frozen=True)
class DerivedViews:
    """Every event list a consumer view needs, derived from one snapshot."""

    all_events: list[EnrichedEvent] = field(default_factory=list)
    service_events: list[EnrichedEvent] = field(default_factory=list)
    teacher_options: list[TeacherOption] = field(default_factory=list)
    filtered_events: list[EnrichedEvent] = field(default_factory=list)
    course_events: list[EnrichedEvent] = field(default_factory=list)
    schedule_events: list[EnrichedEvent] = field(default_factory=list)
    search_results: list[EnrichedEvent] = field(default_factory=list)


def derive_views(
    calendars: Sequence[Calendar],
    rules: NormalizationRules,
    filters: FilterState,
    main_calendar_id: Optional[str],
    search_query: str = "",
    tz: Optional[tzinfo] = None,
) -> DerivedViews:
    """Recompute every derived view from a calendar/rules/filter snapshot."""
    all_events = enrich_events(calendars, rules, tz)
    filtered = apply_filters(all_events, filters, main_calendar_id, tz=tz)
    return DerivedViews(
        all_events=all_events,
        service_events=service_events(all_events),
        teacher_options=teacher_options(all_events),
        filtered_events=filtered,
        course_events=apply_filters(
            all_events, filters, main_calendar_id, SourceScope.ALL, tz=tz
        ),
        schedule_events=apply_filters(
            all_events, filters, main_calendar_id, SourceScope.VISIBLE, tz=tz
        ),
        search_results=search_events(filtered, search_query),
    )
