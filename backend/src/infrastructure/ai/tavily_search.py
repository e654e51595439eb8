"""
Tavily Search - Concrete implementation of WebSearchPort over the Tavily REST API.
"""

import logging
import threading
import time
from typing import Callable, Optional

import requests

from config import settings
from domain.ai.ports import (
    WebSearchPort,
    WebSearchResponse,
    WebSearchResult,
    WebSearchTimeoutError,
    WebSearchRateLimitError,
    WebSearchAuthError,
    WebSearchServiceError,
)
from observability.metrics import record_web_search

logger = logging.getLogger(__name__)


class TavilySearchProvider(WebSearchPort):
    """Tavily web search via plain HTTP (POST /search).

    search() is called from the web-search stage thread pool, and
    requests.Session is not thread-safe, so every thread gets its own
    session from session_factory.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: int = 30,
        session_factory: Callable[[], requests.Session] = requests.Session
    ):
        self.api_key = api_key or settings.TAVILY_API_KEY
        if not self.api_key:
            raise ValueError("Tavily API key not provided. Set TAVILY_API_KEY environment variable.")

        self.base_url = (base_url or settings.TAVILY_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session_factory = session_factory
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Session owned by the calling thread, created on first use."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
        return session

    def search(
        self,
        query: str,
        max_results: int = 10,
        search_depth: str = "advanced",
        include_answer: bool = True,
        include_domains: Optional[list[str]] = None
    ) -> WebSearchResponse:
        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
            "search_depth": search_depth,
            "include_answer": include_answer,
        }
        if include_domains:
            payload["include_domains"] = include_domains

        start_time = time.perf_counter()

        try:
            resp = self.session.post(
                f"{self.base_url}/search",
                json=payload,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as e:
            record_web_search(status="timeout")
            raise WebSearchTimeoutError(f"Tavily search timeout: {e}")
        except requests.RequestException as e:
            record_web_search(status="service_error")
            raise WebSearchServiceError(f"Tavily request failed: {e}")

        if resp.status_code in (401, 403):
            record_web_search(status="auth_error")
            raise WebSearchAuthError(f"Tavily authentication failed ({resp.status_code})")
        if resp.status_code == 429:
            record_web_search(status="rate_limited")
            raise WebSearchRateLimitError("Tavily rate limit exceeded")
        if resp.status_code >= 400:
            record_web_search(status="service_error")
            raise WebSearchServiceError(f"Tavily returned HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            record_web_search(status="service_error")
            raise WebSearchServiceError(f"Tavily returned invalid JSON: {e}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        record_web_search(status="success", latency_ms=latency_ms)

        results = [
            WebSearchResult(
                title=r.get("title") or "",
                url=r.get("url") or "",
                content=r.get("content") or "",
                score=float(r.get("score") or 0.0),
            )
            for r in data.get("results", [])
        ]

        logger.debug(f"Tavily search '{query}' returned {len(results)} results in {latency_ms}ms")

        return WebSearchResponse(query=query, results=results, answer=data.get("answer"))
