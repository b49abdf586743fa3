"""Event enrichment and deduplication - agendum_lite.

Turns the per-calendar parser output into one flat list of display-ready
``EnrichedEvent`` records, then flags (never removes) mutualized duplicates.
"""

import logging
from collections.abc import Sequence
from datetime import tzinfo
from typing import Optional

from ..calendar.lite_datetime_utils import parse_ics_datetime
from ..lite_models import (
    Calendar,
    EnrichedEvent,
    NormalizationRules,
    NormalizedEvent,
    RuleCategory,
)
from .normalization import normalize_list, normalize_value

logger = logging.getLogger(__name__)

# Placeholder used when an event carries no teacher at all.
TEACHER_PLACEHOLDER = "—"


def _compute_duration_hours(
    event: NormalizedEvent, start_ts: Optional[float], end_ts: Optional[float]
) -> float:
    if event.duration_hours and event.duration_hours > 0:
        return event.duration_hours
    if start_ts is not None and end_ts is not None and end_ts > start_ts:
        return (end_ts - start_ts) / 3600.0
    return 0.0


def enrich_event(
    calendar: Calendar,
    event: NormalizedEvent,
    rules: NormalizationRules,
    tz: Optional[tzinfo] = None,
) -> EnrichedEvent:
    """Merge one event with its calendar context and normalization results.

    Args:
        calendar: Owning calendar
        event: Parser output for the event
        rules: Current normalization rules
        tz: Local zone used for naive start/end strings

    Returns:
        Enriched event with ``is_duplicate`` False
    """
    start_date = parse_ics_datetime(event.start_iso, tz)
    end_date = parse_ics_datetime(event.end_iso, tz)
    start_ts = start_date.timestamp() if start_date is not None else None
    end_ts = end_date.timestamp() if end_date is not None else None

    teacher_source = event.teachers if event.teachers else (TEACHER_PLACEHOLDER,)
    teachers = normalize_list(
        teacher_source,
        rules.rename_map(RuleCategory.TEACHERS),
        rules.hide_map(RuleCategory.TEACHERS),
    )
    promos = normalize_list(
        event.promos,
        rules.rename_map(RuleCategory.PROMOS),
        rules.hide_map(RuleCategory.PROMOS),
    )
    subject = normalize_value(
        rules.rename_map(RuleCategory.SUBJECTS),
        rules.hide_map(RuleCategory.SUBJECTS),
        event.subject,
    )

    data = event.model_dump()
    data.update(
        subject=subject,
        teachers=teachers,
        promos=promos,
        duration_hours=_compute_duration_hours(event, start_ts, end_ts),
        start_date=start_date,
        end_date=end_date,
        start_ts=start_ts,
        end_ts=end_ts,
        color=calendar.color,
        stats_included=calendar.include_in_stats,
        calendar_name=calendar.name,
        calendar_id=calendar.id,
        is_visible=calendar.visible,
        extracted_teacher=", ".join(teachers),
        promo=", ".join(promos),
        is_duplicate=False,
    )
    return EnrichedEvent(**data)


def build_fingerprint(event: EnrichedEvent) -> str:
    """Key identifying the same session delivered through several calendars.

    Location is not part of the key.
    """
    return "|".join(
        (event.start_iso, event.end_iso, event.subject, event.type_, event.extracted_teacher)
    )


def mark_duplicates(events: Sequence[EnrichedEvent]) -> list[EnrichedEvent]:
    """Flag every repeat of an already-seen fingerprint as a duplicate.

    Events excluded from stats are never duplicates. The first occurrence in
    sequence order wins. No event is removed.

    Args:
        events: Enriched events in pipeline order

    Returns:
        New list of the same length with ``is_duplicate`` set
    """
    seen: set[str] = set()
    result: list[EnrichedEvent] = []
    duplicates = 0
    for event in events:
        if not event.stats_included:
            is_duplicate = False
        else:
            fingerprint = build_fingerprint(event)
            is_duplicate = fingerprint in seen
            seen.add(fingerprint)
        if is_duplicate:
            duplicates += 1
        if is_duplicate != event.is_duplicate:
            event = event.model_copy(update={"is_duplicate": is_duplicate})
        result.append(event)

    if duplicates:
        logger.debug("Flagged %d duplicate events out of %d", duplicates, len(result))
    return result


def enrich_events(
    calendars: Sequence[Calendar],
    rules: NormalizationRules,
    tz: Optional[tzinfo] = None,
) -> list[EnrichedEvent]:
    """Build the flat enriched event list for all calendars.

    Order is calendar order then event order. The result depends only on the
    arguments, so it can be recomputed on every calendar or rule change.

    Args:
        calendars: Calendar snapshot
        rules: Normalization rules snapshot
        tz: Local zone used for naive start/end strings

    Returns:
        Enriched events with duplicates flagged
    """
    enriched = [
        enrich_event(calendar, event, rules, tz)
        for calendar in calendars
        for event in calendar.events
    ]
    return mark_duplicates(enriched)
