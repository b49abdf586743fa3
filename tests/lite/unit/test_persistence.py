"""Unit tests for calendar state persistence."""

import json
from datetime import UTC, datetime
from typing import Any

import pytest

from agendum_lite.domain.normalization import set_hidden, set_rename
from agendum_lite.lite_models import NormalizationRules, RuleCategory
from agendum_lite.sync.persistence import (
    FALLBACK_CALENDARS_KEY,
    FALLBACK_MAIN_ID_KEY,
    FALLBACK_RULES_KEY,
    LEGACY_CALENDAR_ID,
    LEGACY_CALENDAR_NAME,
    MAIN_CALENDAR_KEY,
    RULES_KEY,
    SCHEDULE_KEY,
    CalendarPersistence,
    DirectoryStringStore,
    JsonFileKeyValueStore,
    MemoryStringStore,
    namespaced_db_name,
    namespaced_key,
    sanitize_namespace,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]

SYNCED = datetime(2025, 1, 10, 12, 0, tzinfo=UTC)


class MemoryKeyValueStore:
    """Async dict-backed primary store."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def put(self, value: Any, key: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class BrokenKeyValueStore:
    """Primary store that fails every operation."""

    async def get(self, key: str) -> Any:
        raise OSError("disk unavailable")

    async def put(self, value: Any, key: str) -> None:
        raise OSError("disk unavailable")

    async def delete(self, key: str) -> None:
        raise OSError("disk unavailable")


@pytest.fixture
def remote_calendar(make_calendar, make_normalized_event):
    return make_calendar(
        "r1",
        (make_normalized_event("e1", teachers=("Jane Doe",), promos=("L1",)),),
        source_url="https://example.org/l1.ics",
        last_synced_at=SYNCED,
        last_attempt_at=SYNCED,
        last_warning="1 error",
        include_in_stats=False,
    )


class TestNamespaces:
    def test_sanitize_namespace_when_mixed_input_then_lowercase_safe_chars(self) -> None:
        """Namespaces are lowercased and reduced to safe characters."""
        assert sanitize_namespace("  My Profile_2-b!  ") == "myprofile_2-b"
        assert sanitize_namespace(None) == ""

    def test_namespaced_names_when_namespace_set_then_prefixed(self) -> None:
        """Store names get the namespace prefix."""
        assert namespaced_key("k", "dev") == "dev__k"
        assert namespaced_key("k", "") == "k"
        assert namespaced_db_name(namespace="dev") == "agendum-db__dev"
        assert namespaced_db_name() == "agendum-db"


class TestCalendarPersistence:
    """Tests for CalendarPersistence."""

    @pytest.mark.asyncio
    async def test_save_then_load_when_primary_ok_then_state_restored(
        self, remote_calendar
    ) -> None:
        """Saved state loads back from the primary store."""
        store = MemoryKeyValueStore()
        persistence = CalendarPersistence(store)
        rules = set_hidden(
            set_rename(NormalizationRules(), RuleCategory.TEACHERS, "J. Doe", "Jane Doe"),
            RuleCategory.PROMOS,
            "L0",
            True,
        )

        await persistence.save_calendars([remote_calendar], "r1")
        await persistence.save_rules(rules)
        state = await persistence.load_state()

        assert state.calendars == [remote_calendar]
        assert state.main_calendar_id == "r1"
        assert state.normalization_rules == rules
        saved = store.data[SCHEDULE_KEY][0]
        assert saved["includeInStats"] is False
        assert saved["remote"]["sourceUrl"] == "https://example.org/l1.ics"
        assert store.data[RULES_KEY]["hidden"]["promos"] == {"L0": True}

    @pytest.mark.asyncio
    async def test_save_calendars_when_main_not_given_then_main_untouched(
        self, remote_calendar
    ) -> None:
        """Saving without a main id keeps the stored one."""
        store = MemoryKeyValueStore({MAIN_CALENDAR_KEY: "r1"})
        await CalendarPersistence(store).save_calendars([remote_calendar])
        assert store.data[MAIN_CALENDAR_KEY] == "r1"

    @pytest.mark.asyncio
    async def test_load_when_main_id_empty_string_then_none(self, remote_calendar) -> None:
        """An empty stored main id means no main calendar."""
        store = MemoryKeyValueStore()
        persistence = CalendarPersistence(store)
        await persistence.save_calendars([remote_calendar], "")
        assert (await persistence.load_state()).main_calendar_id is None

    @pytest.mark.asyncio
    async def test_load_when_legacy_event_list_then_migrated_to_single_calendar(self) -> None:
        """A legacy event list becomes one calendar."""
        legacy_events = [
            {"uid": "a", "summary": "CM Algo", "subject": "Algo", "type_": "CM"},
            {"uid": "b", "summary": "TD Algo", "subject": "Algo", "type_": "TD", "teachers": None},
        ]
        persistence = CalendarPersistence(MemoryKeyValueStore({SCHEDULE_KEY: legacy_events}))

        state = await persistence.load_state()

        assert state.main_calendar_id == LEGACY_CALENDAR_ID
        (calendar,) = state.calendars
        assert calendar.id == LEGACY_CALENDAR_ID
        assert calendar.name == LEGACY_CALENDAR_NAME
        assert calendar.visible and calendar.include_in_stats
        assert [e.uid for e in calendar.events] == ["a", "b"]
        assert calendar.events[1].teachers == ()

    @pytest.mark.asyncio
    async def test_load_when_older_calendar_shape_then_defaults_filled(self) -> None:
        """Missing calendar fields get defaults."""
        saved = [
            {
                "id": "c1",
                "name": "Old",
                "color": "#10b981",
                "events": [{"uid": "x", "promos": "not a list"}],
                "remote": {"sourceUrl": "https://e.org/a.ics", "lastSyncedAt": "2025-01-10T12:00:00Z"},
            },
            "garbage",
            {"name": "missing id"},
        ]
        state = await CalendarPersistence(MemoryKeyValueStore({SCHEDULE_KEY: saved})).load_state()

        (calendar,) = state.calendars
        assert calendar.visible is True
        assert calendar.include_in_stats is True
        assert calendar.events[0].promos == ()
        assert calendar.remote.last_attempt_at == SYNCED

    @pytest.mark.asyncio
    async def test_save_when_primary_fails_then_fallback_used_with_namespace(
        self, remote_calendar
    ) -> None:
        """A failing primary store falls back to namespaced keys."""
        fallback = MemoryStringStore()
        persistence = CalendarPersistence(BrokenKeyValueStore(), fallback, namespace="Dev")

        await persistence.save_calendars([remote_calendar], "r1")
        await persistence.save_rules(NormalizationRules(teachers={"a": "b"}))

        assert json.loads(fallback.items[f"dev__{FALLBACK_CALENDARS_KEY}"])[0]["id"] == "r1"
        assert fallback.items[f"dev__{FALLBACK_MAIN_ID_KEY}"] == "r1"
        assert json.loads(fallback.items[f"dev__{FALLBACK_RULES_KEY}"])["teachers"] == {"a": "b"}

        state = await persistence.load_state()
        assert state.calendars == [remote_calendar]
        assert state.main_calendar_id == "r1"
        assert state.normalization_rules.teachers == {"a": "b"}

    @pytest.mark.asyncio
    async def test_load_when_both_stores_unusable_then_empty_state(self) -> None:
        """Unusable stores load an empty state."""
        fallback = MemoryStringStore()
        fallback.items[FALLBACK_CALENDARS_KEY] = "{not json"
        state = await CalendarPersistence(BrokenKeyValueStore(), fallback).load_state()
        assert state.calendars == []
        assert state.main_calendar_id is None

    @pytest.mark.asyncio
    async def test_purge_when_called_then_both_stores_emptied(self, remote_calendar) -> None:
        """Purge empties both stores."""
        store = MemoryKeyValueStore()
        fallback = MemoryStringStore()
        fallback.items[FALLBACK_RULES_KEY] = "{}"
        persistence = CalendarPersistence(store, fallback)
        await persistence.save_calendars([remote_calendar], "r1")

        await persistence.purge()

        assert store.data == {}
        assert fallback.items == {}

    @pytest.mark.asyncio
    async def test_no_primary_store_when_saving_then_fallback_only(self, remote_calendar) -> None:
        """Without a primary store only the fallback is written."""
        fallback = MemoryStringStore()
        await CalendarPersistence(None, fallback).save_calendars([remote_calendar])
        assert FALLBACK_CALENDARS_KEY in fallback.items


class TestFileStores:
    """Tests for the on-disk stores."""

    @pytest.mark.asyncio
    async def test_json_file_store_when_put_get_delete_then_persisted_on_disk(
        self, tmp_path
    ) -> None:
        """The JSON store keeps values on disk."""
        path = tmp_path / "nested" / "agendum-db.json"
        store = JsonFileKeyValueStore(path)

        assert await store.get("missing") is None
        await store.put({"a": [1, 2]}, "k")
        await store.put("Réseaux", "name")

        reopened = JsonFileKeyValueStore(path)
        assert await reopened.get("k") == {"a": [1, 2]}
        assert await reopened.get("name") == "Réseaux"

        await reopened.delete("k")
        assert json.loads(path.read_text(encoding="utf-8")) == {"name": "Réseaux"}
        assert list(path.parent.iterdir()) == [path]

    def test_directory_store_when_set_and_remove_then_file_lifecycle(self, tmp_path) -> None:
        """The directory store creates and removes files."""
        store = DirectoryStringStore(tmp_path / "fallback")
        assert store.get_item("dev__key") is None
        store.set_item("dev__key", "value")
        assert store.get_item("dev__key") == "value"
        store.remove_item("dev__key")
        store.remove_item("dev__key")
        assert store.get_item("dev__key") is None

    @pytest.mark.asyncio
    async def test_persistence_when_file_backed_then_round_trip(
        self, tmp_path, remote_calendar
    ) -> None:
        """File-backed persistence restores what it saved."""
        persistence = CalendarPersistence(
            JsonFileKeyValueStore(tmp_path / "db.json"), DirectoryStringStore(tmp_path / "fb")
        )
        await persistence.save_calendars([remote_calendar], "r1")
        state = await CalendarPersistence(JsonFileKeyValueStore(tmp_path / "db.json")).load_state()
        assert state.calendars == [remote_calendar]
