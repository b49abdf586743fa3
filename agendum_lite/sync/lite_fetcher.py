"""HTTP fetcher for remote ICS calendars - agendum_lite."""

import logging
from typing import Any, Optional

import httpx

from ..config_manager import get_config_value
from ..exceptions import RemoteFetchError, RemoteHTTPStatusError, RemoteNetworkError
from .http_client import DEFAULT_HEADERS, build_timeout, get_shared_client

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGES = {
    "fr": (
        "Impossible de joindre le proxy (CORS/réseau). "
        "Vérifiez le worker local et son origine autorisée."
    ),
    "en": (
        "Unable to reach the proxy (CORS/network). "
        "Check the local worker and its allowed origin."
    ),
}


class RemoteCalendarFetcher:
    """Downloads calendar text over HTTP(S), always bypassing caches."""

    def __init__(
        self,
        settings: Any = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            settings: Object exposing ``request_timeout`` and ``lang`` (Config)
            client: Explicit client to use instead of the shared pool
        """
        self.settings = settings
        self._client = client
        self._client_id = "remote_calendars"

    @property
    def lang(self) -> str:
        return get_config_value(self.settings, "lang", "fr") or "fr"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        request_timeout = float(get_config_value(self.settings, "request_timeout", 30) or 30)
        return await get_shared_client(self._client_id, timeout=build_timeout(request_timeout))

    async def fetch_text(self, url: str) -> str:
        """GET ``url`` and return its body decoded as UTF-8.

        Args:
            url: Final URL to fetch (already routed through the proxy if needed)

        Returns:
            Response body text

        Raises:
            RemoteNetworkError: DNS, connection, TLS or timeout failure
            RemoteHTTPStatusError: Non-2xx status, message ``HTTP <code>``
            RemoteFetchError: Any other request failure raised by httpx
        """
        client = await self._get_client()
        logger.debug("Fetching remote calendar %s", url)
        try:
            response = await client.get(url, headers=DEFAULT_HEADERS)
        except httpx.TransportError as exc:
            logger.warning("Network error fetching %s: %s", url, exc)
            message = NETWORK_ERROR_MESSAGES.get(self.lang, NETWORK_ERROR_MESSAGES["en"])
            raise RemoteNetworkError(message) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # Redirect loops and malformed URLs
            logger.warning("Request for %s failed: %s", url, exc)
            raise RemoteFetchError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            logger.warning("HTTP %d fetching %s", response.status_code, url)
            raise RemoteHTTPStatusError(f"HTTP {response.status_code}", response.status_code)

        text = response.content.decode("utf-8", errors="replace")
        logger.debug("Fetched %d bytes from %s", len(response.content), url)
        return text
