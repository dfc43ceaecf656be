import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ConfigurationError, TransportError, UpstreamError

logger = logging.getLogger(__name__)

_KNOWN_RESULT_KEYS = ("url", "title", "publishedDate", "author", "score", "text")


@dataclass
class ExaSearchResult:
    url: str
    title: Optional[str] = None
    published_date: Optional[str] = None
    author: Optional[str] = None
    score: Optional[float] = None
    text: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExaSearchResult":
        return cls(
            url=data.get("url") or "",
            title=data.get("title"),
            published_date=data.get("publishedDate"),
            author=data.get("author"),
            score=data.get("score"),
            text=data.get("text"),
            extra={key: value for key, value in data.items() if key not in _KNOWN_RESULT_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape of the result, unknown upstream keys included"""
        data = dict(self.extra)
        data["url"] = self.url
        for key, value in (("title", self.title), ("publishedDate", self.published_date),
                           ("author", self.author), ("score", self.score), ("text", self.text)):
            if value is not None:
                data[key] = value
        return data


@dataclass
class ExaSearchResponse:
    results: List[ExaSearchResult]
    request_id: Optional[str] = None


class ExaSearchClient:
    """Thin client for the Exa search API"""

    def __init__(self, api_key: Optional[str], base_url: str = "https://api.exa.ai",
                 timeout_ms: int = 30000, client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise ConfigurationError("EXA_API_KEY is required")

        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_ms / 1000.0
        self.timeout = httpx.Timeout(self.timeout_s)
        self.headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "x-api-key": api_key,
        }
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=self.headers)
        return self._client

    async def search(
        self,
        query: str,
        num_results: int = 10,
        type: str = "neural",
        include_domains: Optional[List[str]] = None,
        exclude_domains: Optional[List[str]] = None,
        text: bool = False,
    ) -> ExaSearchResponse:
        body: Dict[str, Any] = {
            "query": query,
            "numResults": num_results,
            "type": type,
            "text": text,
        }
        if include_domains:
            body["includeDomains"] = include_domains
        if exclude_domains:
            body["excludeDomains"] = exclude_domains

        logger.info(f"Exa search: '{query}' (num_results={num_results}, type={type})")
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.post("/search", json=body, headers=self.headers, timeout=self.timeout),
                timeout=self.timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(f"{self.base_url}/search", f"search timeout ({e.__class__.__name__})") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{self.base_url}/search", f"{e.__class__.__name__}: {e}") from e

        if not response.is_success:
            raise UpstreamError("exa", response.text[:500] or response.reason_phrase,
                                status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("exa", f"search response is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise UpstreamError("exa", "search response is not a JSON object")

        raw_results = data.get("results") or []
        results = [ExaSearchResult.from_dict(item) for item in raw_results if isinstance(item, dict)]
        logger.info(f"{len(results)} résultats Exa pour: {query}")
        return ExaSearchResponse(results=results, request_id=data.get("requestId"))

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
