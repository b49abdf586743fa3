"""Persistence of calendars, main calendar id and normalization rules.

State lives in a primary async key/value store (a JSON document on disk by
default) with a string-keyed fallback store used whenever the primary one
fails. Persistence is best-effort: failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from ..domain.normalization import coerce_normalization_rules, default_normalization_rules
from ..lite_models import Calendar, NormalizationRules, NormalizedEvent, RemoteSource

logger = logging.getLogger(__name__)

DB_NAME = "agendum-db"

SCHEDULE_KEY = "current_schedule"
MAIN_CALENDAR_KEY = "main_calendar_id"
RULES_KEY = "normalization_rules"

FALLBACK_CALENDARS_KEY = "agendum_state_calendars"
FALLBACK_MAIN_ID_KEY = "agendum_state_main_id"
FALLBACK_RULES_KEY = "agendum_state_norm_rules"

LEGACY_CALENDAR_ID = "legacy"
LEGACY_CALENDAR_NAME = "Imported Schedule"

_NAMESPACE_RE = re.compile(r"[^a-z0-9_-]")
_KEY_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_namespace(value: Optional[str]) -> str:
    """Lowercase and drop every character outside ``[a-z0-9_-]``."""
    return _NAMESPACE_RE.sub("", (value or "").strip().lower())


def namespaced_key(base_key: str, namespace: str = "") -> str:
    """``<namespace>__<key>`` when a namespace is set, else the key itself."""
    return f"{namespace}__{base_key}" if namespace else base_key


def namespaced_db_name(base_name: str = DB_NAME, namespace: str = "") -> str:
    """``<name>__<namespace>`` when a namespace is set, else the name itself."""
    return f"{base_name}__{namespace}" if namespace else base_name


class KeyValueStore(Protocol):
    """Async key/value store holding JSON-compatible values."""

    async def get(self, key: str) -> Any: ...

    async def put(self, value: Any, key: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class StringStore(Protocol):
    """Synchronous string-keyed store of string values."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def _atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to a temp file in the same directory then replace ``path``."""
    tmp_path: Optional[Path] = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, encoding="utf-8"
        ) as tf:
            tmp_path = Path(tf.name)
            tf.write(text)
            tf.flush()
            with contextlib.suppress(OSError):
                os.fsync(tf.fileno())
        tmp_path.replace(path)
    except BaseException:
        if tmp_path is not None and tmp_path.exists():
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        raise


class JsonFileKeyValueStore:
    """Key/value store backed by a single JSON object on disk.

    Writes are atomic (temp file + replace). File I/O runs in a worker thread
    so the event loop is never blocked.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_locked(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} must contain a JSON object")  # noqa: TRY004
        return data

    def _write_locked(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write_text(self._path, json.dumps(data, ensure_ascii=False))

    def _get(self, key: str) -> Any:
        with self._lock:
            return self._read_locked().get(key)

    def _put(self, value: Any, key: str) -> None:
        with self._lock:
            data = self._read_locked()
            data[key] = value
            self._write_locked(data)

    def _delete(self, key: str) -> None:
        with self._lock:
            data = self._read_locked()
            if key in data:
                del data[key]
                self._write_locked(data)

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._get, key)

    async def put(self, value: Any, key: str) -> None:
        await asyncio.to_thread(self._put, value, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)


class DirectoryStringStore:
    """String store keeping one UTF-8 file per key in a directory."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{_KEY_FILENAME_RE.sub('_', key)}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        _atomic_write_text(self._path_for(key), value)

    def remove_item(self, key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path_for(key).unlink()


class MemoryStringStore:
    """In-process string store."""

    def __init__(self) -> None:
        self.items: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


@dataclass
class PersistedState:
    """Everything restored at startup."""

    calendars: list[Calendar] = field(default_factory=list)
    main_calendar_id: Optional[str] = None
    normalization_rules: NormalizationRules = field(default_factory=default_normalization_rules)


def _event_with_defaults(raw: Any) -> Optional[NormalizedEvent]:
    if not isinstance(raw, dict):
        return None
    data = dict(raw)
    if not isinstance(data.get("teachers"), (list, tuple)):
        data["teachers"] = ()
    if not isinstance(data.get("promos"), (list, tuple)):
        data["promos"] = ()
    if not isinstance(data.get("cleaned_description"), str):
        data["cleaned_description"] = ""
    try:
        return NormalizedEvent.model_validate(data)
    except ValidationError as exc:
        logger.warning("Skipping malformed persisted event %r: %s", data.get("uid"), exc)
        return None


def _calendar_with_defaults(raw: Any) -> Optional[Calendar]:
    """Rebuild a persisted calendar, filling fields older versions did not store."""
    if not isinstance(raw, dict):
        return None
    data = dict(raw)
    events = data.get("events") if isinstance(data.get("events"), list) else []
    data["events"] = [e for e in map(_event_with_defaults, events) if e is not None]

    remote = data.get("remote")
    if isinstance(remote, dict):
        remote = dict(remote)
        if remote.get("lastAttemptAt") is None and remote.get("last_attempt_at") is None:
            remote["lastAttemptAt"] = remote.get("lastSyncedAt", remote.get("last_synced_at"))
        data["remote"] = remote
    else:
        data["remote"] = None

    try:
        return Calendar.model_validate(data)
    except ValidationError as exc:
        logger.warning("Skipping malformed persisted calendar %r: %s", data.get("id"), exc)
        return None


def _is_legacy_event_list(saved: Any) -> bool:
    return (
        isinstance(saved, list)
        and len(saved) > 0
        and isinstance(saved[0], dict)
        and "events" not in saved[0]
    )


def _calendars_from_saved(saved: Any) -> list[Calendar]:
    if not isinstance(saved, list):
        return []
    return [c for c in (_calendar_with_defaults(item) for item in saved) if c is not None]


def dump_calendars(calendars: Sequence[Calendar]) -> list[dict[str, Any]]:
    """JSON-compatible form of calendars, camelCase keys as persisted."""
    return [c.model_dump(mode="json", by_alias=True) for c in calendars]


class CalendarPersistence:
    """Loads and saves the application state through primary and fallback stores."""

    def __init__(
        self,
        primary: Optional[KeyValueStore],
        fallback: Optional[StringStore] = None,
        namespace: str = "",
        legacy_color: str = "#3b82f6",
    ) -> None:
        """Initialize persistence.

        Args:
            primary: Async key/value store (None behaves like an unavailable store)
            fallback: String store used when the primary store fails
            namespace: Storage namespace; sanitized and prefixed to fallback keys
            legacy_color: Color given to a migrated legacy schedule
        """
        self._primary = primary
        self._fallback = fallback
        self._namespace = sanitize_namespace(namespace)
        self._legacy_color = legacy_color

    def _fallback_key(self, key: str) -> str:
        return namespaced_key(key, self._namespace)

    def _require_primary(self) -> KeyValueStore:
        if self._primary is None:
            raise RuntimeError("Primary store unavailable")
        return self._primary

    async def load_state(self) -> PersistedState:
        """Restore state, migrating a legacy flat event list when found."""
        try:
            primary = self._require_primary()
            saved = await primary.get(SCHEDULE_KEY)
            saved_main_id = await primary.get(MAIN_CALENDAR_KEY)
            saved_rules = await primary.get(RULES_KEY)
        except Exception as exc:
            logger.warning("Primary store unavailable, using fallback store: %s", exc)
            return self._load_fallback_state()

        state = PersistedState()
        if saved_rules:
            state.normalization_rules = coerce_normalization_rules(saved_rules)
        if isinstance(saved_main_id, str) and saved_main_id:
            state.main_calendar_id = saved_main_id

        if saved:
            if _is_legacy_event_list(saved):
                events = tuple(
                    e for e in (_event_with_defaults(item) for item in saved) if e is not None
                )
                logger.info("Migrating %d legacy events into one calendar", len(events))
                state.calendars = [
                    Calendar(
                        id=LEGACY_CALENDAR_ID,
                        name=LEGACY_CALENDAR_NAME,
                        color=self._legacy_color,
                        visible=True,
                        include_in_stats=True,
                        events=events,
                    )
                ]
                state.main_calendar_id = LEGACY_CALENDAR_ID
            else:
                state.calendars = _calendars_from_saved(saved)

        logger.debug(
            "Loaded %d calendars (main=%s) from primary store",
            len(state.calendars),
            state.main_calendar_id,
        )
        return state

    def _load_fallback_state(self) -> PersistedState:
        if self._fallback is None:
            return PersistedState()
        try:
            raw = self._fallback.get_item(self._fallback_key(FALLBACK_CALENDARS_KEY))
            main_id = self._fallback.get_item(self._fallback_key(FALLBACK_MAIN_ID_KEY))
            rules_raw = self._fallback.get_item(self._fallback_key(FALLBACK_RULES_KEY))
            calendars = _calendars_from_saved(json.loads(raw)) if raw else []
            rules = (
                coerce_normalization_rules(json.loads(rules_raw))
                if rules_raw
                else default_normalization_rules()
            )
            return PersistedState(
                calendars=calendars,
                main_calendar_id=main_id or None,
                normalization_rules=rules,
            )
        except Exception:
            logger.exception("Fallback state load failed")
            return PersistedState()

    async def save_calendars(
        self, calendars: Sequence[Calendar], main_calendar_id: Optional[str] = None
    ) -> None:
        """Persist calendars, and the main calendar id when one is given.

        Pass ``""`` as ``main_calendar_id`` to record that no calendar is main.
        """
        payload = dump_calendars(calendars)
        try:
            primary = self._require_primary()
            await primary.put(payload, SCHEDULE_KEY)
            if main_calendar_id is not None:
                await primary.put(main_calendar_id, MAIN_CALENDAR_KEY)
            return
        except Exception as exc:
            logger.warning("Primary store save failed, using fallback store: %s", exc)

        if self._fallback is None:
            return
        try:
            self._fallback.set_item(
                self._fallback_key(FALLBACK_CALENDARS_KEY), json.dumps(payload, ensure_ascii=False)
            )
            if main_calendar_id is not None:
                self._fallback.set_item(self._fallback_key(FALLBACK_MAIN_ID_KEY), main_calendar_id)
        except Exception:
            logger.exception("Fallback state save failed")

    async def save_rules(self, rules: NormalizationRules) -> None:
        """Persist normalization rules."""
        payload = rules.model_dump(mode="json")
        try:
            await self._require_primary().put(payload, RULES_KEY)
            return
        except Exception as exc:
            logger.warning("Primary store rules save failed, using fallback store: %s", exc)

        if self._fallback is None:
            return
        try:
            self._fallback.set_item(
                self._fallback_key(FALLBACK_RULES_KEY), json.dumps(payload, ensure_ascii=False)
            )
        except Exception:
            logger.exception("Fallback rules save failed")

    async def purge(self) -> None:
        """Delete all persisted state from both stores, ignoring errors."""
        try:
            primary = self._require_primary()
            for key in (SCHEDULE_KEY, MAIN_CALENDAR_KEY, RULES_KEY):
                await primary.delete(key)
        except Exception as exc:
            logger.debug("Ignoring primary store purge failure: %s", exc)

        if self._fallback is None:
            return
        try:
            for key in (FALLBACK_CALENDARS_KEY, FALLBACK_MAIN_ID_KEY, FALLBACK_RULES_KEY):
                self._fallback.remove_item(self._fallback_key(key))
        except Exception as exc:
            logger.debug("Ignoring fallback store purge failure: %s", exc)
