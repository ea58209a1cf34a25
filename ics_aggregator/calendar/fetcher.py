"""HTTP fetcher for ICS calendar sources.

One GET per call with a bounded timeout. Every failure is reported through the
returned :class:`FetchResponse`; retries are left to the refresh scheduler.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from ..core.http_client import build_client, get_shared_client
from ..exceptions import SourceFetchError
from .models import CalendarSource, FetchResponse

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0

_EXPECTED_CONTENT_TYPES = ("text/calendar", "text/plain", "application/octet-stream", "application/ics")


def validate_source_url(url: str) -> None:
    """Check that a source URL is an http(s) URL with a hostname.

    Raises:
        SourceFetchError: If the URL is unusable
    """
    try:
        parsed = urlparse(url)
    except (TypeError, ValueError) as e:
        raise SourceFetchError(f"Invalid URL {url!r}: {e}") from e

    if parsed.scheme not in ("http", "https"):
        raise SourceFetchError(f"Unsupported URL scheme: {parsed.scheme or '(none)'}")
    if not parsed.hostname:
        raise SourceFetchError("URL is missing a hostname")


class ICSFetcher:
    """Async HTTP client for downloading ICS calendar files."""

    def __init__(
        self,
        settings: Any = None,
        shared_client: Optional[httpx.AsyncClient] = None,
        use_shared_client: bool = True,
    ) -> None:
        """Initialize ICS fetcher.

        Args:
            settings: Application settings (``request_timeout`` is read if present)
            shared_client: Client to use for every request; not closed by the fetcher
            use_shared_client: Borrow the process-wide pooled client when no
                client is passed in
        """
        self.settings = settings
        self.default_timeout = float(getattr(settings, "request_timeout", DEFAULT_REQUEST_TIMEOUT))
        self.client: Optional[httpx.AsyncClient] = shared_client
        self._owns_client = False
        self._external_client = shared_client is not None
        self._use_shared_client = use_shared_client

        logger.debug(
            "ICS fetcher initialized (external_client=%s, shared_pool=%s)",
            self._external_client,
            self._use_shared_client,
        )

    async def __aenter__(self) -> "ICSFetcher":
        await self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self.client is not None and self._owns_client and not self.client.is_closed:
            await self.client.aclose()
            logger.debug("Closed individual HTTP client")
        if not self._external_client:
            self.client = None
        self._owns_client = False

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is not None and not self.client.is_closed:
            return self.client

        if self._use_shared_client and not self._external_client:
            try:
                self.client = await get_shared_client("fetcher")
                return self.client
            except RuntimeError as e:
                logger.warning("Shared HTTP client unavailable, using an individual client: %s", e)

        self.client = build_client(timeout=httpx.Timeout(self.default_timeout, connect=10.0))
        self._owns_client = True
        return self.client

    async def fetch(self, source: CalendarSource, timeout: Optional[float] = None) -> FetchResponse:
        """Download the ICS body for one source.

        Args:
            source: Calendar source to fetch
            timeout: Per-request timeout in seconds; defaults to ``request_timeout``

        Returns:
            FetchResponse; ``success`` is False on timeout, network failure,
            non-2xx status, invalid URL or an empty body
        """
        effective_timeout = float(timeout if timeout is not None else self.default_timeout)

        try:
            validate_source_url(source.url)
        except SourceFetchError as e:
            logger.warning("Rejected URL for source %s: %s", source.name, e)
            return FetchResponse(success=False, error_message=str(e))

        client = await self._ensure_client()
        logger.debug("Fetching ICS for source %s (timeout=%.1fs)", source.name, effective_timeout)

        try:
            response = await client.get(
                source.url,
                headers=dict(source.custom_headers),
                timeout=effective_timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Timeout fetching source %s after %.1fs", source.name, effective_timeout)
            return FetchResponse(
                success=False,
                error_message=f"Request timeout after {effective_timeout:g}s",
            )
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("HTTP %d fetching source %s", status, source.name)
            return FetchResponse(
                success=False,
                status_code=status,
                error_message=f"HTTP {status}: {e.response.reason_phrase}",
            )
        except httpx.HTTPError as e:
            logger.warning("Network error fetching source %s: %s", source.name, e)
            return FetchResponse(success=False, error_message=f"Network error: {e}")
        except Exception as e:
            logger.exception("Unexpected error fetching source %s", source.name)
            return FetchResponse(success=False, error_message=f"Unexpected error: {e}")

        return self._create_response(source, response)

    def _create_response(self, source: CalendarSource, response: httpx.Response) -> FetchResponse:
        content_type = response.headers.get("content-type", "")
        if content_type and not content_type.lower().startswith(_EXPECTED_CONTENT_TYPES):
            logger.warning("Unexpected content type for source %s: %s", source.name, content_type)

        content = response.text
        if not content or not content.strip():
            logger.warning("Empty response body from source %s", source.name)
            return FetchResponse(
                success=False,
                status_code=response.status_code,
                content_type=content_type or None,
                error_message="Empty response body",
            )

        logger.debug(
            "Fetched %d bytes for source %s (HTTP %d)",
            len(response.content),
            source.name,
            response.status_code,
        )
        return FetchResponse(
            success=True,
            content=content,
            status_code=response.status_code,
            content_type=content_type or None,
        )
