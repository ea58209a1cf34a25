"""Pooled httpx clients for calendar downloads.

A refresh fetches every source at once and refreshes repeat on an interval, so
fetchers borrow a long-lived ``httpx.AsyncClient`` registered under a name
instead of opening a client per request.
"""

import asyncio
import logging
from typing import Optional

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

# Office365 and some Google endpoints answer bare client UAs with 403
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": f"Mozilla/5.0 (compatible; ics-aggregator/{__version__})",
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
    "Cache-Control": "no-cache",
}

_pool: dict[str, httpx.AsyncClient] = {}
_pool_lock = asyncio.Lock()


def build_client(
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Create a client configured for ICS downloads (redirects followed)."""
    return httpx.AsyncClient(
        limits=limits or DEFAULT_LIMITS,
        timeout=timeout or DEFAULT_TIMEOUT,
        headers=DEFAULT_HEADERS,
        follow_redirects=True,
    )


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Return the pooled client registered as ``client_id``, creating it on first use.

    A closed client is replaced. ``limits`` and ``timeout`` only apply when a
    client is created.

    Raises:
        RuntimeError: If httpx refuses to build the client
    """
    async with _pool_lock:
        client = _pool.get(client_id)
        if client is not None and not client.is_closed:
            return client

        try:
            client = build_client(limits, timeout)
        except (TypeError, ValueError, httpx.HTTPError) as e:
            raise RuntimeError(f"Could not create pooled HTTP client {client_id!r}: {e}") from e

        _pool[client_id] = client
        logger.debug("Pooled HTTP client %r created (%d in pool)", client_id, len(_pool))
        return client


async def close_all_clients() -> None:
    """Close and forget every pooled client.

    Fetchers holding a pooled client get a fresh one on their next request.
    """
    async with _pool_lock:
        clients = list(_pool.items())
        _pool.clear()

    for client_id, client in clients:
        if client.is_closed:
            continue
        try:
            await client.aclose()
        except (httpx.HTTPError, RuntimeError) as e:
            logger.warning("Closing pooled HTTP client %r failed: %s", client_id, e)
        else:
            logger.debug("Pooled HTTP client %r closed", client_id)


def shared_client_count() -> int:
    """Number of open pooled clients."""
    return sum(1 for client in _pool.values() if not client.is_closed)
