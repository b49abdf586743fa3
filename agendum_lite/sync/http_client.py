"""Shared HTTP client manager for remote calendar fetches.

One pooled ``httpx.AsyncClient`` per client id is reused across refreshes
instead of creating a client per fetch. Call ``close_all_clients()`` on
shutdown.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock = asyncio.Lock()

DEFAULT_LIMITS = httpx.Limits(
    max_connections=8,
    max_keepalive_connections=4,
)

# Cache bypass is part of every request: calendars must always be fetched fresh.
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": "agendum-lite/0.1 (+httpx)",
    "Accept": "text/calendar, text/plain, application/octet-stream, */*",
    "Cache-Control": "no-cache, no-store",
    "Pragma": "no-cache",
}


def build_timeout(request_timeout: float = 30.0) -> httpx.Timeout:
    """Timeout policy: ``request_timeout`` for reads, shorter connect/write limits."""
    return httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=request_timeout)


async def get_shared_client(
    client_id: str = "default",
    timeout: Optional[httpx.Timeout] = None,
    limits: Optional[httpx.Limits] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        timeout: Timeout configuration for a newly created client
        limits: Connection limits for a newly created client

    Returns:
        Shared httpx.AsyncClient
    """
    async with _client_lock:
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            effective_limits = limits or DEFAULT_LIMITS
            logger.debug(
                "Creating shared HTTP client '%s' (max_connections=%s)",
                client_id,
                effective_limits.max_connections,
            )
            client = httpx.AsyncClient(
                timeout=timeout or build_timeout(),
                limits=effective_limits,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            _shared_clients[client_id] = client
            logger.info("Created shared HTTP client '%s'", client_id)
        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients and clean up resources."""
    async with _client_lock:
        for client_id, client in _shared_clients.items():
            try:
                if not client.is_closed:
                    await client.aclose()
                    logger.debug("Closed shared HTTP client '%s'", client_id)
            except (httpx.HTTPError, RuntimeError) as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)

        _shared_clients.clear()
        logger.debug("All shared HTTP clients closed")
