"""URL handling and refresh timing helpers for remote calendars."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import SplitResult, unquote, urlsplit, urlunsplit

from ..calendar.lite_datetime_utils import time_remaining
from ..exceptions import InvalidCalendarUrlError, ProxyNotConfiguredError
from ..lite_models import RemoteSource

logger = logging.getLogger(__name__)

PLANNING_HOST = "planning.univ-rennes1.fr"
PLANNING_PATH_PREFIX = "/jsp/custom/modules/plannings/"
PROXY_ENDPOINT = "/p"

AUTO_REFRESH_INTERVAL = timedelta(hours=24)
MANUAL_REFRESH_COOLDOWN = timedelta(hours=1)

_MULTI_SLASH_RE = re.compile(r"/{2,}")
_EXTENSION_RE = re.compile(r"\.[^.]+$")


def parse_calendar_url(raw: Optional[str]) -> SplitResult:
    """Validate a calendar source URL.

    Args:
        raw: URL as typed by the user

    Returns:
        Split URL

    Raises:
        InvalidCalendarUrlError: If the URL is empty, not HTTP(S), or has no host
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        raise InvalidCalendarUrlError("URL vide")
    try:
        parsed = urlsplit(trimmed)
        hostname = parsed.hostname
    except ValueError as exc:
        raise InvalidCalendarUrlError("URL invalide") from exc
    if parsed.scheme.lower() not in ("http", "https") or not hostname:
        raise InvalidCalendarUrlError("URL invalide")
    return parsed


def is_planning_proxy_url(url: SplitResult) -> bool:
    """True for URLs of the university planning system, which must go through the proxy."""
    return (url.hostname or "") == PLANNING_HOST and url.path.startswith(PLANNING_PATH_PREFIX)


def build_fetch_url(source_url: str, proxy_base_url: Optional[str]) -> str:
    """Return the URL to actually GET for a calendar source.

    Planning-system URLs are rewritten to ``<proxy base>/p/<original path>``
    keeping the original query string. Other URLs are returned verbatim, only
    stripped of surrounding whitespace.

    Raises:
        InvalidCalendarUrlError: If ``source_url`` is not a valid HTTP(S) URL
        ProxyNotConfiguredError: If a proxied URL is requested without an
            absolute proxy base URL
    """
    parsed = parse_calendar_url(source_url)
    if not is_planning_proxy_url(parsed):
        return source_url.strip()

    base_raw = (proxy_base_url or "").strip()
    base = urlsplit(base_raw) if base_raw else None
    if base is None or base.scheme not in ("http", "https") or not base.netloc:
        raise ProxyNotConfiguredError("Proxy non configuré (AGENDUM_PROXY_BASE_URL)")

    base_path = base.path.rstrip("/")
    if not base_path.endswith(PROXY_ENDPOINT):
        base_path = f"{base_path}{PROXY_ENDPOINT}"
    path = _MULTI_SLASH_RE.sub("/", f"{base_path}/{parsed.path.lstrip('/')}")
    proxied = urlunsplit((base.scheme, base.netloc, path, parsed.query, ""))
    logger.debug("Routing %s through proxy %s", source_url, proxied)
    return proxied


def calendar_name_from_url(source_url: str) -> str:
    """Default calendar name: last path segment without extension, else host.

    Examples:
        >>> calendar_name_from_url("https://example.org/ics/L3%20Info.ics")
        'L3 Info'
    """
    parsed = parse_calendar_url(source_url)
    segments = [segment for segment in parsed.path.split("/") if segment]
    last = segments[-1] if segments else (parsed.hostname or "")
    return _EXTENSION_RE.sub("", unquote(last))


def last_attempt(remote: RemoteSource) -> Optional[datetime]:
    """Most recent refresh attempt, falling back to the last successful sync."""
    return remote.last_attempt_at or remote.last_synced_at


def is_refresh_due(
    remote: Optional[RemoteSource], now: datetime, interval: timedelta = AUTO_REFRESH_INTERVAL
) -> bool:
    """True when a remote calendar has never been attempted or is ``interval`` old."""
    if remote is None or not remote.source_url:
        return False
    return time_remaining(last_attempt(remote), interval, now) <= timedelta(0)


def manual_refresh_wait(
    remote: RemoteSource, now: datetime, cooldown: timedelta = MANUAL_REFRESH_COOLDOWN
) -> timedelta:
    """Time left before another manual refresh is allowed."""
    return time_remaining(remote.last_manual_refresh_at, cooldown, now)
