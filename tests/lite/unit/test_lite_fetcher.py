"""Unit tests for RemoteCalendarFetcher and the shared HTTP client pool."""

import httpx
import pytest

from agendum_lite.exceptions import RemoteFetchError, RemoteHTTPStatusError, RemoteNetworkError
from agendum_lite.sync.http_client import (
    DEFAULT_HEADERS,
    build_timeout,
    close_all_clients,
    get_shared_client,
)
from agendum_lite.sync.lite_fetcher import NETWORK_ERROR_MESSAGES, RemoteCalendarFetcher

pytestmark = [pytest.mark.unit, pytest.mark.fast]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestRemoteCalendarFetcher:
    """Tests for fetch_text."""

    @pytest.mark.asyncio
    async def test_fetch_text_when_ok_then_body_and_no_cache_headers(self, simple_settings) -> None:
        """Requests bypass caches and return the body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content="BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n".encode())

        async with _client(handler) as client:
            fetcher = RemoteCalendarFetcher(simple_settings, client=client)
            text = await fetcher.fetch_text("https://example.org/a.ics")

        assert text.startswith("BEGIN:VCALENDAR")
        assert seen[0].headers["Cache-Control"] == "no-cache, no-store"
        assert seen[0].headers["Pragma"] == "no-cache"

    @pytest.mark.asyncio
    async def test_fetch_text_when_utf8_body_then_decoded(self, simple_settings) -> None:
        """Bodies are decoded as UTF-8."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content="SUMMARY:Réseaux".encode("utf-8"))

        async with _client(handler) as client:
            text = await RemoteCalendarFetcher(simple_settings, client=client).fetch_text(
                "https://example.org/a.ics"
            )
        assert text == "SUMMARY:Réseaux"

    @pytest.mark.asyncio
    async def test_fetch_text_when_503_then_http_status_error(self, simple_settings) -> None:
        """A non-2xx status raises with the status code."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        async with _client(handler) as client:
            fetcher = RemoteCalendarFetcher(simple_settings, client=client)
            with pytest.raises(RemoteHTTPStatusError) as exc_info:
                await fetcher.fetch_text("https://example.org/a.ics")

        assert str(exc_info.value) == "HTTP 503"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lang", ["fr", "en"])
    async def test_fetch_text_when_connect_fails_then_localized_network_error(
        self, simple_settings, lang
    ) -> None:
        """Connection failures raise the localized network message."""
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        simple_settings.lang = lang
        async with _client(handler) as client:
            fetcher = RemoteCalendarFetcher(simple_settings, client=client)
            with pytest.raises(RemoteNetworkError) as exc_info:
                await fetcher.fetch_text("https://example.org/a.ics")

        assert str(exc_info.value) == NETWORK_ERROR_MESSAGES[lang]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            httpx.TooManyRedirects("Exceeded maximum allowed redirects."),
            httpx.InvalidURL("bad host"),
        ],
    )
    async def test_fetch_text_when_non_transport_httpx_error_then_remote_fetch_error(
        self, simple_settings, error
    ) -> None:
        """Redirect loops and malformed URLs surface as the fetch error type."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise error

        async with _client(handler) as client:
            fetcher = RemoteCalendarFetcher(simple_settings, client=client)
            with pytest.raises(RemoteFetchError) as exc_info:
                await fetcher.fetch_text("https://example.org/a.ics")

        assert not isinstance(exc_info.value, RemoteNetworkError)
        assert str(exc_info.value) == str(error)
        assert exc_info.value.__cause__ is error

    def test_lang_when_settings_dict_then_read_from_dict(self) -> None:
        """The language comes from settings and defaults to French."""
        assert RemoteCalendarFetcher({"lang": "en"}).lang == "en"
        assert RemoteCalendarFetcher().lang == "fr"


class TestSharedClient:
    """Tests for the shared client pool."""

    @pytest.mark.asyncio
    async def test_get_shared_client_when_same_id_then_same_instance(self) -> None:
        """One client is shared per id."""
        try:
            first = await get_shared_client("test-pool")
            second = await get_shared_client("test-pool")
            assert first is second
            assert first.headers["Cache-Control"] == DEFAULT_HEADERS["Cache-Control"]
        finally:
            await close_all_clients()
        assert first.is_closed

    @pytest.mark.asyncio
    async def test_get_shared_client_when_previous_closed_then_new_instance(self) -> None:
        """A closed client is replaced."""
        try:
            first = await get_shared_client("test-reopen")
            await first.aclose()
            second = await get_shared_client("test-reopen")
            assert second is not first
        finally:
            await close_all_clients()

    def test_build_timeout_when_value_given_then_read_timeout(self) -> None:
        """The configured value becomes the read timeout."""
        timeout = build_timeout(12.0)
        assert timeout.read == 12.0
        assert timeout.connect == 10.0
