"""Exception hierarchy for agendum_lite.

Background refreshes record these on the owning calendar (``remote.last_error``)
instead of raising; first-time imports let them propagate to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .lite_models import ParseDiagnostics


class AgendumError(Exception):
    """Base exception for all agendum_lite errors."""


class ConfigurationError(AgendumError):
    """Configuration is missing or invalid.

    Raised synchronously, before any network call is attempted.
    """


class ProxyNotConfiguredError(ConfigurationError):
    """A planning-system URL needs the proxy but no proxy base URL is configured."""


class InvalidCalendarUrlError(AgendumError):
    """Calendar source URL is empty, malformed, or not HTTP(S)."""


class RemoteFetchError(AgendumError):
    """Base exception for remote calendar fetch failures."""


class RemoteNetworkError(RemoteFetchError):
    """Transport-level failure (DNS, connection refused, proxy unreachable, timeout)."""


class RemoteHTTPStatusError(RemoteFetchError):
    """The server answered with a non-2xx HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ParserError(AgendumError):
    """Base exception for ICS parsing failures."""


class ParserFatalError(ParserError):
    """The parser reported errors and produced no usable events."""

    def __init__(self, message: str, diagnostics: Optional[ParseDiagnostics] = None):
        super().__init__(message)
        self.diagnostics = diagnostics


class ParserWorkerError(ParserError):
    """The parsing worker failed to answer a request."""


class ParserWorkerUnavailableError(ParserWorkerError):
    """No parsing worker is running and fallback mode is not active."""


class ParserWorkerTerminatedError(ParserWorkerError):
    """The parsing worker was terminated while the request was pending."""
