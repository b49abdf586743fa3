from collections.abc import Callable, Generator
from types import SimpleNamespace
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from agendum_lite.lite_models import Calendar, NormalizedEvent, RemoteSource

PARIS = ZoneInfo("Europe/Paris")


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across lite tests.

    Fields:
      - proxy_base_url: absolute CORS proxy base
      - lang: diagnostic language
      - request_timeout: HTTP read timeout in seconds
      - cooldown / interval values matching the production defaults
    """
    return SimpleNamespace(
        proxy_base_url="https://proxy.example.org",
        lang="en",
        request_timeout=5,
        auto_refresh_interval_seconds=86400,
        manual_refresh_cooldown_seconds=3600,
        refresh_tick_seconds=3600,
    )


@pytest.fixture
def paris_tz() -> ZoneInfo:
    """Deterministic local zone so date and time-of-day tests do not depend on the host."""
    return PARIS


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure AGENDUM_* variables from the developer's shell do not leak into tests."""
    for key in (
        "AGENDUM_TEST_TIME",
        "AGENDUM_DEBUG",
        "AGENDUM_LOG_LEVEL",
        "AGENDUM_PROXY_BASE_URL",
        "AGENDUM_LANG",
        "AGENDUM_TIMEZONE",
        "AGENDUM_DATA_DIR",
        "AGENDUM_STORAGE_NAMESPACE",
        "AGENDUM_AUTO_REFRESH_INTERVAL",
        "AGENDUM_MANUAL_REFRESH_COOLDOWN",
        "AGENDUM_REFRESH_TICK",
        "AGENDUM_REQUEST_TIMEOUT",
    ):
        monkeypatch.delenv(key, raising=False)
    yield


def _vevent(uid: str, summary: str, start: str, end: str, extra: str = "") -> str:
    lines = ["BEGIN:VEVENT"]
    if uid:
        lines.append(f"UID:{uid}")
    lines += [
        f"SUMMARY:{summary}",
        f"DTSTART:{start}",
        f"DTEND:{end}",
    ]
    if extra:
        lines.append(extra)
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def build_ics(*vevents: str) -> str:
    """Wrap VEVENT blocks in a minimal VCALENDAR."""
    body = "\r\n".join(vevents)
    parts = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//agendum//tests//EN"]
    if body:
        parts.append(body)
    parts.append("END:VCALENDAR")
    return "\r\n".join(parts) + "\r\n"


@pytest.fixture
def ics_builder() -> SimpleNamespace:
    """Helpers to assemble ICS text inline in tests."""
    return SimpleNamespace(vevent=_vevent, calendar=build_ics)


@pytest.fixture
def sample_ics() -> str:
    """Two UTC events: a CM and a TD of the same subject."""
    return build_ics(
        _vevent("ev-1", "CM PRORES", "20250106T080000Z", "20250106T100000Z", "LOCATION:Amphi A"),
        _vevent("ev-2", "PRORES TD", "20250107T130000Z", "20250107T150000Z", "LOCATION:B12"),
    )


@pytest.fixture
def make_normalized_event() -> Callable[..., NormalizedEvent]:
    """Factory for parser-shaped events with Paris wall-clock ISO strings."""

    def factory(uid: str = "u1", **overrides: Any) -> NormalizedEvent:
        data: dict[str, Any] = {
            "uid": uid,
            "summary": "CM PRORES",
            "subject": "PRORES",
            "type_": "CM",
            "start_iso": "2025-01-06T09:00:00",
            "end_iso": "2025-01-06T11:00:00",
            "duration_hours": 2.0,
        }
        data.update(overrides)
        return NormalizedEvent(**data)

    return factory


@pytest.fixture
def make_calendar() -> Callable[..., Calendar]:
    """Factory for calendars; pass ``source_url`` to make a remote one."""

    def factory(
        calendar_id: str = "c1",
        events: tuple[NormalizedEvent, ...] = (),
        source_url: str = "",
        **overrides: Any,
    ) -> Calendar:
        remote = None
        if source_url:
            remote = RemoteSource(
                source_url=source_url,
                **{k: overrides.pop(k) for k in list(overrides) if k.startswith("last_")},
            )
        data: dict[str, Any] = {
            "id": calendar_id,
            "name": f"Calendar {calendar_id}",
            "color": "#3b82f6",
            "events": events,
            "remote": remote,
        }
        data.update(overrides)
        return Calendar(**data)

    return factory
