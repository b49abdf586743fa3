"""Session ordinal numbering (CM1, CM2, TD1...) for teaching events.

Each CM series is keyed by subject; TD/TP series are also keyed by student
group so that two groups doing "the same" TD are numbered independently.
Duplicated rows of one physical session share the same ordinal.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from datetime import tzinfo
from typing import Optional

from ..calendar.lite_datetime_utils import parse_ics_datetime
from ..lite_models import CoreSessionType, EnrichedEvent, SessionOrdinalInfo

logger = logging.getLogger(__name__)

NO_GROUP_KEY = "__nogroup"

_WHITESPACE_RE = re.compile(r"\s+")


def _normalize_text(value: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", (value or "").strip().lower())


def get_core_session_type(raw_type: Optional[str]) -> Optional[CoreSessionType]:
    """Classify a raw type string, CM taking priority over TD over TP.

    Examples:
        >>> get_core_session_type("td machine")
        <CoreSessionType.TD: 'TD'>
    """
    upper = (raw_type or "").upper()
    for session_type in (CoreSessionType.CM, CoreSessionType.TD, CoreSessionType.TP):
        if session_type.value in upper:
            return session_type
    return None


def format_session_label(info: SessionOrdinalInfo) -> str:
    """Return the display label, e.g. ``TD2``."""
    return info.label


def _group_key(event: EnrichedEvent) -> str:
    tokens = {_normalize_text(p) for p in event.promos}
    tokens.update(_normalize_text(p) for p in event.promo.split(","))
    tokens.discard("")
    if not tokens:
        return NO_GROUP_KEY
    return "|".join(sorted(tokens))


def _teacher_key(event: EnrichedEvent) -> str:
    if event.extracted_teacher:
        return _normalize_text(event.extracted_teacher)
    if event.teachers:
        return ",".join(sorted(_normalize_text(t) for t in event.teachers))
    return ""


def _subject_key(event: EnrichedEvent) -> str:
    return _normalize_text(event.subject or event.summary)


def _timestamp(
    ts: Optional[float], iso: str, tz: Optional[tzinfo]
) -> float:
    if ts is not None and math.isfinite(ts):
        return ts
    parsed = parse_ics_datetime(iso, tz)
    if parsed is not None:
        return parsed.timestamp()
    return math.inf


def _series_key(event: EnrichedEvent, session_type: CoreSessionType) -> str:
    subject = _subject_key(event)
    if session_type is CoreSessionType.CM:
        return f"{subject}|{session_type.value}"
    return f"{subject}|{session_type.value}|{_group_key(event)}"


def build_occurrence_key(event: EnrichedEvent) -> str:
    """Key identifying one physical session, even when duplicated across calendars."""
    return "|".join(
        (
            event.start_iso,
            event.end_iso,
            _teacher_key(event),
            _normalize_text(event.location),
            _normalize_text(event.summary),
        )
    )


def compute_session_ordinals(
    events: Sequence[EnrichedEvent], tz: Optional[tzinfo] = None
) -> list[Optional[SessionOrdinalInfo]]:
    """Assign per-series ordinals to CM/TD/TP events.

    Events are numbered in chronological order, ties broken by subject, type,
    group, teacher then uid, so the result does not depend on input order.
    Unclassified events get None.

    Args:
        events: Events to number (typically a filtered view)
        tz: Local zone for start/end strings lacking a parsed timestamp

    Returns:
        One entry per input event, aligned with the input order
    """

    def sort_key(index: int) -> tuple:
        event = events[index]
        return (
            _timestamp(event.start_ts, event.start_iso, tz),
            _timestamp(event.end_ts, event.end_iso, tz),
            _subject_key(event),
            _normalize_text(event.type_),
            _group_key(event),
            _teacher_key(event),
            _normalize_text(event.uid),
            build_occurrence_key(event),
        )

    order = sorted(range(len(events)), key=sort_key)

    counters: dict[str, int] = {}
    occurrences: dict[str, dict[str, int]] = {}
    result: list[Optional[SessionOrdinalInfo]] = [None] * len(events)

    for index in order:
        event = events[index]
        session_type = get_core_session_type(event.type_)
        if session_type is None:
            continue

        series = _series_key(event, session_type)
        seen = occurrences.setdefault(series, {})
        occurrence = build_occurrence_key(event)
        ordinal = seen.get(occurrence)
        if ordinal is None:
            ordinal = counters.get(series, 0) + 1
            counters[series] = ordinal
            seen[occurrence] = ordinal
        result[index] = SessionOrdinalInfo(type=session_type, ordinal=ordinal)

    logger.debug("Assigned ordinals across %d series for %d events", len(counters), len(events))
    return result
