"""Default ICS parser for agendum_lite.

Converts raw ICS text into ``NormalizedEvent`` records plus diagnostics. Any
callable with the signature ``(text) -> ParseResult`` can replace it; the
rest of the package only relies on that seam.
"""

import logging
import re
from collections.abc import Callable
from datetime import date, datetime, tzinfo
from typing import Any, Optional

from icalendar import Calendar

from ..lite_models import NormalizedEvent, ParseDiagnostics, ParseResult
from .lite_datetime_utils import to_local

logger = logging.getLogger(__name__)

ParseFn = Callable[[str], ParseResult]

MAX_ERROR_MESSAGES = 5
DEFAULT_SESSION_TYPE = "Autre"
LOCAL_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S"

_TYPES = r"CM|TD|TP|CT|DS|EXAM|PROJET|RÉUNION|REUNION"

# "CM PRORES", "TD EXPO IA"
_TYPE_SUBJECT_RE = re.compile(rf"^\s*({_TYPES})\b[\s-]+(.+)$", re.IGNORECASE)
# "BDL2 TD - Coworking space"
_SUBJECT_DASH_TYPE_RE = re.compile(rf"^\s*(.+?)\s*-\s*({_TYPES})\b.*$", re.IGNORECASE)
# "PPAR TD", "IPD TP Cla 1"
_SUBJECT_TYPE_RE = re.compile(rf"^\s*(.+?)\s+({_TYPES})(?:\b|\s|$)", re.IGNORECASE)

# Trailing export stamp added by the planning system to every description.
_EXPORT_STAMP_RE = re.compile(r"^\(?\s*export(?:é|e|ed)\s.*$", re.IGNORECASE)


def split_summary(summary: str) -> tuple[str, str]:
    """Extract ``(type, subject)`` from an event summary.

    Patterns are tried in order: type then subject, subject dash type, then
    subject followed by type. Unrecognized summaries become ("Autre", summary).

    Examples:
        >>> split_summary("IPD TP Cla 1")
        ('TP', 'IPD')
    """
    text = summary.strip()
    match = _TYPE_SUBJECT_RE.match(text)
    if match:
        return match.group(1), match.group(2).strip()
    match = _SUBJECT_DASH_TYPE_RE.match(text)
    if match:
        return match.group(2), match.group(1).strip()
    match = _SUBJECT_TYPE_RE.match(text)
    if match:
        return match.group(2), match.group(1).strip()
    return DEFAULT_SESSION_TYPE, text


def clean_description(description: str) -> str:
    """Drop blank lines and the planning-system export stamp."""
    lines = [line.strip() for line in description.splitlines()]
    return "\n".join(line for line in lines if line and not _EXPORT_STAMP_RE.match(line))


def _raw_value(component: Any, name: str) -> str:
    prop = component.get(name)
    if prop is None:
        return ""
    to_ical = getattr(prop, "to_ical", None)
    if callable(to_ical):
        value = to_ical()
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)
    return str(prop)


def _text_value(component: Any, name: str) -> str:
    prop = component.get(name)
    return "" if prop is None else str(prop)


def _local_naive(value: Any, tz: Optional[tzinfo]) -> Optional[datetime]:
    """Convert a decoded DTSTART/DTEND value to local wall-clock time."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        return to_local(value, tz).replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def _decoded(component: Any, name: str) -> Any:
    if name not in component:
        return None
    return component.decoded(name)


def _normalize_component(component: Any, tz: Optional[tzinfo]) -> NormalizedEvent:
    summary = _text_value(component, "SUMMARY")
    description = _text_value(component, "DESCRIPTION")
    start_raw = _raw_value(component, "DTSTART")
    end_raw = _raw_value(component, "DTEND")

    session_type, subject = split_summary(summary)

    start_local = _local_naive(_decoded(component, "DTSTART"), tz)
    end_local = _local_naive(_decoded(component, "DTEND"), tz)

    start_iso, end_iso, duration_hours = start_raw, end_raw, 0.0
    if start_local is not None and end_local is not None:
        minutes = int((end_local - start_local).total_seconds() // 60)
        duration_hours = minutes / 60.0
        start_iso = start_local.strftime(LOCAL_ISO_FORMAT)
        end_iso = end_local.strftime(LOCAL_ISO_FORMAT)

    return NormalizedEvent(
        uid=_text_value(component, "UID"),
        summary=summary,
        description=description,
        location=_text_value(component, "LOCATION"),
        start=start_raw,
        end=end_raw,
        subject=subject,
        type_=session_type.upper(),
        start_iso=start_iso,
        end_iso=end_iso,
        duration_hours=duration_hours,
        cleaned_description=clean_description(description),
    )


def parse_ics_content(content: str, tz: Optional[tzinfo] = None) -> ParseResult:
    """Parse ICS text into normalized events and diagnostics.

    Events without a UID are skipped and counted. Structural errors are
    counted with at most five sample messages kept. Never raises for
    malformed input: callers decide what counts as fatal.

    Args:
        content: Raw ICS text
        tz: Local zone used to render ``start_iso``/``end_iso``

    Returns:
        ParseResult with events in document order
    """
    calendars_parsed = 0
    parser_errors = 0
    skipped = 0
    messages: list[str] = []
    events: list[NormalizedEvent] = []

    def record_error(message: str) -> None:
        nonlocal parser_errors
        parser_errors += 1
        if len(messages) < MAX_ERROR_MESSAGES:
            messages.append(message)

    try:
        components = Calendar.from_ical(content or "", multiple=True)
    except ValueError as exc:
        logger.warning("ICS content could not be parsed: %s", exc)
        record_error(str(exc))
        components = []

    for calendar in components:
        if calendar.name != "VCALENDAR":
            record_error(f"Unexpected top-level component {calendar.name}")
            continue
        calendars_parsed += 1
        for component in calendar.walk():
            for prop_name, error in getattr(component, "errors", None) or ():
                record_error(f"{component.name} {prop_name}: {error}")
        for component in calendar.walk("VEVENT"):
            if not _text_value(component, "UID"):
                skipped += 1
                continue
            try:
                events.append(_normalize_component(component, tz))
            except (ValueError, TypeError) as exc:
                logger.warning("Failed to parse event %s: %s", component.get("UID"), exc)
                record_error(f"Failed to parse event: {exc}")

    if calendars_parsed == 0 and parser_errors == 0:
        record_error("No complete VCALENDAR component found")

    diagnostics = ParseDiagnostics(
        calendars_parsed=calendars_parsed,
        parser_errors=parser_errors,
        skipped_events_without_uid=skipped,
        parser_error_messages=tuple(messages),
    )
    logger.debug(
        "Parsed %d events from %d calendars (%d errors, %d skipped without UID)",
        len(events),
        calendars_parsed,
        parser_errors,
        skipped,
    )
    return ParseResult(events=tuple(events), diagnostics=diagnostics)


def make_parser(tz: Optional[tzinfo] = None) -> ParseFn:
    """Bind the default parser to a local zone."""

    def parse(content: str) -> ParseResult:
        return parse_ics_content(content, tz)

    return parse
