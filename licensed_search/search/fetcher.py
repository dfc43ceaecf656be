import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class FetchedPage:
    """Raw outcome of one HTTP GET, error statuses included"""
    final_url: str
    status: int
    headers: httpx.Headers
    content_type: Optional[str]
    text: str
    truncated: bool = False


class ContentFetcher:
    """Plain HTTP GET with an independent timeout and body truncation."""

    def __init__(self, timeout_ms: int = 15000, user_agent: str = "LicensedSearchMCP/0.1",
                 client: Optional[httpx.AsyncClient] = None):
        self.timeout_ms = timeout_ms
        self.timeout = httpx.Timeout(timeout_ms / 1000.0)
        self.default_headers = {
            'User-Agent': user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.5',
            'Accept-Language': 'en-US,en;q=0.9',
        }
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.default_headers,
                follow_redirects=True,
            )
        return self._client

    def is_valid_url(self, url: str) -> bool:
        """Check if URL is an absolute http(s) URL"""
        try:
            parsed = urlparse(url)
            return parsed.scheme in ('http', 'https') and bool(parsed.netloc)
        except ValueError:
            return False

    async def _get(self, url: str, max_chars: int) -> FetchedPage:
        client = self._get_client()
        async with client.stream("GET", url, timeout=self.timeout, headers=self.default_headers) as response:
            parts = []
            size = 0
            truncated = False
            # Stop reading once max_chars is exceeded
            async for chunk in response.aiter_text():
                parts.append(chunk)
                size += len(chunk)
                if size > max_chars:
                    truncated = True
                    break

            content = "".join(parts)
            if truncated:
                content = content[:max_chars]
                logger.debug(f"Content truncated to {max_chars} chars for {url}")

            return FetchedPage(
                final_url=str(response.url),
                status=response.status_code,
                headers=response.headers,
                content_type=response.headers.get('content-type'),
                text=content,
                truncated=truncated,
            )

    async def fetch(self, url: str, max_chars: int) -> FetchedPage:
        """GET ``url`` and return its (truncated) text body.

        Error statuses are returned as data. Network failures, invalid URLs
        and calls exceeding ``timeout_ms`` overall raise TransportError.
        """
        if not self.is_valid_url(url):
            raise TransportError(url, "invalid URL")

        try:
            return await asyncio.wait_for(self._get(url, max_chars), timeout=self.timeout_ms / 1000.0)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(url, f"timeout after {self.timeout_ms}ms: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            raise TransportError(url, f"{e.__class__.__name__}: {e}") from e

    async def close(self):
        """Clean up resources"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
