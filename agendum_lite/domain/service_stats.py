"""Teaching-service hour totals for agendum_lite.

Hours are summed over service events only: events from calendars excluded
from stats and events flagged as duplicates never contribute. Each event's
type is mapped to a single bucket, tested in a fixed order so that a type
such as ``"CM/TD"`` lands in ``cm``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..lite_models import EnrichedEvent
from .enrichment import TEACHER_PLACEHOLDER

logger = logging.getLogger(__name__)

UNKNOWN_TEACHER_LABEL = "Unknown teacher"
UNKNOWN_SUBJECT_LABEL = "Unknown subject"

_UNKNOWN_TEACHER_TOKENS = frozenset({TEACHER_PLACEHOLDER, UNKNOWN_TEACHER_LABEL.lower()})

# Order matters: the first matching bucket wins.
_BUCKET_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("cm", ("CM",)),
    ("td", ("TD",)),
    ("tp", ("TP",)),
    ("project", ("PROJET", "PROJECT")),
    ("reunion", ("RÉUNION", "REUNION")),
    ("exam", ("EXAM", "DS", "CT", "CC")),
)


class ServiceScope(str, Enum):
    """Which part of the service to total relative to now."""

    TOTAL = "total"
    DONE = "done"
    TODO = "todo"


@dataclass
class HoursBreakdown:
    """Hours per session bucket plus the number of contributing events."""

    cm: float = 0.0
    td: float = 0.0
    tp: float = 0.0
    project: float = 0.0
    reunion: float = 0.0
    exam: float = 0.0
    other: float = 0.0
    count: int = 0

    @property
    def total_core(self) -> float:
        return self.cm + self.td + self.tp

    @property
    def total_teaching(self) -> float:
        """Core hours plus project hours."""
        return self.total_core + self.project

    def add(self, event: EnrichedEvent) -> None:
        bucket = classify_hours_bucket(event.type_)
        setattr(self, bucket, getattr(self, bucket) + (event.duration_hours or 0.0))
        self.count += 1

    def has_hours(self) -> bool:
        return any(
            getattr(self, name) > 0
            for name in ("cm", "td", "tp", "project", "reunion", "exam", "other")
        )


@dataclass(frozen=True)
class SubjectHours:
    """One subject row inside a teacher breakdown."""

    subject: str
    hours: HoursBreakdown


@dataclass(frozen=True)
class TeacherHours:
    """Per-subject rows for one teacher, largest teaching load first."""

    name: str
    subjects: list[SubjectHours] = field(default_factory=list)

    @property
    def grand_total(self) -> float:
        return sum(row.hours.total_teaching for row in self.subjects)


def classify_hours_bucket(type_: str) -> str:
    """Map a session type to its hours bucket name.

    Args:
        type_: Raw session type, matched case-insensitively by substring

    Returns:
        One of ``cm``, ``td``, ``tp``, ``project``, ``reunion``, ``exam``
        or ``other``
    """
    upper = (type_ or "").upper()
    for bucket, markers in _BUCKET_MARKERS:
        if any(marker in upper for marker in markers):
            return bucket
    return "other"


def _in_scope(event: EnrichedEvent, scope: ServiceScope, now_ts: float) -> bool:
    if scope is ServiceScope.TOTAL:
        return True
    reference = event.end_ts if event.end_ts is not None else event.start_ts
    if reference is None:
        return False
    if scope is ServiceScope.DONE:
        return reference <= now_ts
    return reference > now_ts


def _teacher_tokens(event: EnrichedEvent) -> list[str]:
    return [part.strip() for part in event.extracted_teacher.split(",") if part.strip()]


def _is_unknown_teacher(tokens: list[str]) -> bool:
    return all(token.lower() in _UNKNOWN_TEACHER_TOKENS for token in tokens)


def _matches_teacher(tokens: list[str], teacher: str) -> bool:
    wanted = teacher.strip().lower()
    return any(token.lower() == wanted for token in tokens)


def scoped_service_events(
    events: Iterable[EnrichedEvent],
    *,
    scope: ServiceScope = ServiceScope.TOTAL,
    now: Optional[datetime] = None,
    teacher: Optional[str] = None,
) -> list[EnrichedEvent]:
    """Service events counted by the totals, in input order.

    Args:
        events: Enriched events from every calendar
        scope: ``done`` keeps events already finished, ``todo`` the others
        now: Reference instant for ``done``/``todo``; defaults to the current time
        teacher: When set, keep events taught by this teacher or with no known teacher

    Returns:
        Non-duplicate, stats-included events passing the scope and teacher checks
    """
    scope = ServiceScope(scope)
    now_ts = (now or datetime.now().astimezone()).timestamp()
    kept = []
    for event in events:
        if event.stats_included is False or event.is_duplicate:
            continue
        if not _in_scope(event, scope, now_ts):
            continue
        if teacher:
            tokens = _teacher_tokens(event)
            if not (_matches_teacher(tokens, teacher) or _is_unknown_teacher(tokens)):
                continue
        kept.append(event)
    return kept


def summarize_service_hours(
    events: Iterable[EnrichedEvent],
    *,
    scope: ServiceScope = ServiceScope.TOTAL,
    now: Optional[datetime] = None,
    teacher: Optional[str] = None,
) -> HoursBreakdown:
    """Bucketed hours over the scoped service events."""
    summary = HoursBreakdown()
    for event in scoped_service_events(events, scope=scope, now=now, teacher=teacher):
        summary.add(event)
    logger.debug(
        "Service summary (%s): %.2fh teaching over %d events",
        ServiceScope(scope).value,
        summary.total_teaching,
        summary.count,
    )
    return summary


def teacher_breakdowns(
    events: Iterable[EnrichedEvent],
    *,
    scope: ServiceScope = ServiceScope.TOTAL,
    now: Optional[datetime] = None,
    teacher: Optional[str] = None,
) -> list[TeacherHours]:
    """Per-teacher, per-subject hours over the scoped service events.

    An event with several teachers counts fully for each of them. Events with
    no known teacher are grouped under an unknown-teacher label, which is the
    placeholder dash when a teacher is selected. Subject rows without any
    hours are dropped, as are teachers left without rows.

    Args:
        events: Enriched events from every calendar
        scope: Service scope relative to ``now``
        now: Reference instant; defaults to the current time
        teacher: Restrict to this teacher plus events with no known teacher

    Returns:
        Teachers sorted by grand total descending; with a selected teacher,
        that teacher comes first and the unknown label second
    """
    unknown_label = TEACHER_PLACEHOLDER if teacher else UNKNOWN_TEACHER_LABEL
    grouped: dict[str, dict[str, HoursBreakdown]] = {}

    for event in scoped_service_events(events, scope=scope, now=now, teacher=teacher):
        tokens = _teacher_tokens(event)
        unknown = _is_unknown_teacher(tokens)
        if teacher:
            names = [teacher] if _matches_teacher(tokens, teacher) else [unknown_label]
        else:
            names = [unknown_label] if unknown else tokens

        subject = (event.subject or UNKNOWN_SUBJECT_LABEL).strip()
        for name in names:
            subjects = grouped.setdefault(name, {})
            subjects.setdefault(subject, HoursBreakdown()).add(event)

    result = []
    for name, subjects in grouped.items():
        rows = [
            SubjectHours(subject=subject, hours=hours)
            for subject, hours in subjects.items()
            if hours.has_hours()
        ]
        if not rows:
            continue
        rows.sort(key=lambda row: row.hours.total_teaching, reverse=True)
        result.append(TeacherHours(name=name, subjects=rows))

    def sort_key(entry: TeacherHours) -> tuple[int, float]:
        rank = 2
        if teacher:
            if entry.name.lower() == teacher.strip().lower():
                rank = 0
            elif entry.name == unknown_label:
                rank = 1
        return (rank, -entry.grand_total)

    result.sort(key=sort_key)
    return result
