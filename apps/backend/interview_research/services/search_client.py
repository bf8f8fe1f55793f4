"""Tavily search/extract client used by company research and job analysis."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from interview_research.config import settings
from interview_research.services.resilience import with_retry

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    title: str
    url: str
    content: str


class TavilyClient:
    """Async client for the Tavily search and extract endpoints.

    Every HTTP call is retried on transient failures (transport errors,
    429, 5xx) with exponential backoff.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        max_results: int | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.tavily_api_key
        self.base_url = base_url or settings.tavily_base_url
        self.max_results = max_results or settings.tavily_max_results
        self.timeout = timeout or settings.tavily_timeout
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.base_delay = base_delay if base_delay is not None else settings.retry_base_delay
        self.max_delay = max_delay if max_delay is not None else settings.retry_max_delay
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str, max_results: int | None = None) -> list[SearchHit]:
        """Run one search query.

        Args:
            query: Search query text
            max_results: Override for the configured result count

        Returns:
            Hits with title, url and content snippet

        Raises:
            httpx.HTTPError: After retries are exhausted
        """
        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": "basic",
            "include_answer": False,
            "max_results": max_results or self.max_results,
        }
        data = await with_retry(
            lambda: self._post("/search", payload),
            label=f"Search '{query[:60]}'",
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
        return [
            SearchHit(
                title=item.get("title", ""),
                url=item.get("url", ""),
                content=item.get("content", ""),
            )
            for item in data.get("results", [])
            if item.get("content")
        ]

    async def extract(self, urls: list[str]) -> dict[str, str]:
        """Fetch the raw page text for a list of URLs.

        Returns:
            Mapping of URL to extracted text (failed URLs are omitted)
        """
        if not urls:
            return {}
        payload = {"api_key": self.api_key, "urls": urls}
        data = await with_retry(
            lambda: self._post("/extract", payload),
            label=f"Extract {len(urls)} url(s)",
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )
        for failed in data.get("failed_results", []):
            logger.warning(f"Extraction failed for {failed.get('url')}: {failed.get('error')}")
        return {
            item["url"]: item.get("raw_content", "")
            for item in data.get("results", [])
            if item.get("url") and item.get("raw_content")
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url, transport=self._transport, timeout=self.timeout
        ) as client:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
