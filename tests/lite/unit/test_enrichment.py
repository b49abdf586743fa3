"""Unit tests for event enrichment and duplicate flagging."""

import pytest

from agendum_lite.domain.enrichment import (
    TEACHER_PLACEHOLDER,
    build_fingerprint,
    enrich_event,
    enrich_events,
    mark_duplicates,
)
from agendum_lite.domain.normalization import set_hidden, set_rename
from agendum_lite.lite_models import NormalizationRules, RuleCategory

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def _algo_td(make_normalized_event, uid: str, **overrides):
    data = {
        "summary": "Algo TD",
        "subject": "Algo",
        "type_": "TD",
        "teachers": ("Jane Doe",),
        "start_iso": "2025-01-07T14:00:00",
        "end_iso": "2025-01-07T16:00:00",
    }
    data.update(overrides)
    return make_normalized_event(uid, **data)


class TestEnrichEvent:
    """Tests for enrich_event."""

    def test_enrich_event_when_rules_apply_then_normalized_values(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Rename and hide rules shape the enriched fields."""
        rules = set_rename(NormalizationRules(), RuleCategory.TEACHERS, "J. Doe", "Jane Doe")
        rules = set_hidden(rules, RuleCategory.PROMOS, "Hidden", True)
        rules = set_rename(rules, RuleCategory.SUBJECTS, "ALGO", "Algorithmique")
        event = make_normalized_event(
            "e1",
            subject="ALGO",
            teachers=("J. Doe", "Jane Doe", "Bob"),
            promos=("L1", "Hidden"),
        )
        calendar = make_calendar("cal", (event,), color="#ef4444", include_in_stats=False)

        enriched = enrich_event(calendar, event, rules, paris_tz)

        assert enriched.subject == "Algorithmique"
        assert enriched.teachers == ("Jane Doe", "Bob")
        assert enriched.extracted_teacher == "Jane Doe, Bob"
        assert enriched.promo == "L1"
        assert enriched.color == "#ef4444"
        assert enriched.stats_included is False
        assert enriched.calendar_id == "cal"
        assert enriched.is_duplicate is False

    def test_enrich_event_when_no_teacher_then_placeholder(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """An event without teachers gets the placeholder."""
        event = make_normalized_event("e1")
        enriched = enrich_event(make_calendar("c", (event,)), event, NormalizationRules(), paris_tz)
        assert enriched.extracted_teacher == TEACHER_PLACEHOLDER

    def test_enrich_event_when_times_parse_then_timestamps_and_dates_set(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Parsed times fill the dates and timestamps."""
        event = make_normalized_event("e1", duration_hours=0.0)
        enriched = enrich_event(make_calendar("c", (event,)), event, NormalizationRules(), paris_tz)
        assert enriched.start_date is not None
        assert enriched.start_date.hour == 9
        assert enriched.end_ts - enriched.start_ts == 2 * 3600
        assert enriched.duration_hours == 2.0

    def test_enrich_event_when_times_unparseable_then_zero_duration(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Unparseable times leave no dates and zero hours."""
        event = make_normalized_event("e1", start_iso="?", end_iso="", duration_hours=0.0)
        enriched = enrich_event(make_calendar("c", (event,)), event, NormalizationRules(), paris_tz)
        assert enriched.start_date is None
        assert enriched.start_ts is None
        assert enriched.duration_hours == 0.0


class TestMarkDuplicates:
    """Tests for duplicate flagging across calendars."""

    def test_enrich_events_when_same_session_in_two_calendars_then_one_original(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Only the first copy of a shared session is the original."""
        cal_a = make_calendar("a", (_algo_td(make_normalized_event, "a1"),))
        cal_b = make_calendar("b", (_algo_td(make_normalized_event, "b1"),))

        events = enrich_events([cal_a, cal_b], NormalizationRules(), paris_tz)

        assert [e.is_duplicate for e in events] == [False, True]
        assert len(events) == 2

    def test_mark_duplicates_when_stats_excluded_then_never_duplicate(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Events excluded from stats are never flagged."""
        cal_a = make_calendar("a", (_algo_td(make_normalized_event, "a1"),))
        cal_b = make_calendar(
            "b", (_algo_td(make_normalized_event, "b1"),), include_in_stats=False
        )
        cal_c = make_calendar(
            "c", (_algo_td(make_normalized_event, "c1"),), include_in_stats=False
        )

        events = enrich_events([cal_a, cal_b, cal_c], NormalizationRules(), paris_tz)

        assert [e.is_duplicate for e in events] == [False, False, False]

    def test_mark_duplicates_when_excluded_event_first_then_included_one_is_original(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """An excluded copy does not claim the fingerprint."""
        cal_a = make_calendar(
            "a", (_algo_td(make_normalized_event, "a1"),), include_in_stats=False
        )
        cal_b = make_calendar("b", (_algo_td(make_normalized_event, "b1"),))
        events = enrich_events([cal_a, cal_b], NormalizationRules(), paris_tz)
        assert [e.is_duplicate for e in events] == [False, False]

    def test_mark_duplicates_when_location_differs_then_still_duplicate(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Location is not part of the fingerprint."""
        cal = make_calendar(
            "a",
            (
                _algo_td(make_normalized_event, "a1", location="B12"),
                _algo_td(make_normalized_event, "a2", location="B14"),
            ),
        )
        events = enrich_events([cal], NormalizationRules(), paris_tz)
        assert build_fingerprint(events[0]) == build_fingerprint(events[1])
        assert [e.is_duplicate for e in events] == [False, True]

    def test_mark_duplicates_when_teacher_renamed_to_same_then_collapsed(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Teachers renamed to one display name collapse into duplicates."""
        rules = set_rename(NormalizationRules(), RuleCategory.TEACHERS, "J. Doe", "Jane Doe")
        cal_a = make_calendar("a", (_algo_td(make_normalized_event, "a1"),))
        cal_b = make_calendar("b", (_algo_td(make_normalized_event, "b1", teachers=("J. Doe",)),))
        events = enrich_events([cal_a, cal_b], rules, paris_tz)
        assert [e.is_duplicate for e in events] == [False, True]

    def test_mark_duplicates_when_called_twice_then_independent_results(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Each call starts from an empty fingerprint set."""
        cal = make_calendar("a", (_algo_td(make_normalized_event, "a1"),))
        events = enrich_events([cal], NormalizationRules(), paris_tz)
        assert mark_duplicates(events)[0].is_duplicate is False
        assert mark_duplicates(events)[0].is_duplicate is False

    def test_mark_duplicates_when_many_copies_then_exactly_one_original_per_fingerprint(
        self, make_calendar, make_normalized_event, paris_tz
    ) -> None:
        """Every fingerprint keeps exactly one original."""
        calendars = [
            make_calendar(str(i), (_algo_td(make_normalized_event, f"e{i}"),)) for i in range(4)
        ]
        calendars.append(
            make_calendar(
                "other",
                (_algo_td(make_normalized_event, "x", start_iso="2025-01-08T14:00:00"),),
            )
        )
        events = enrich_events(calendars, NormalizationRules(), paris_tz)
        originals: dict[str, int] = {}
        for event in events:
            if not event.is_duplicate:
                key = build_fingerprint(event)
                originals[key] = originals.get(key, 0) + 1
        assert sorted(originals.values()) == [1, 1]
