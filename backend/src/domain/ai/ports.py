"""
AI Provider Ports - Abstract interfaces for LLM and web-search providers.

Hexagonal Architecture: matching stages depend on these ports, not on the
concrete OpenAI / Tavily adapters in infrastructure.ai.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LLMCompletion:
    """
    Result of one JSON-mode chat completion.

    Attributes:
        raw_output: Raw string response from LLM
        parsed_json: Parsed JSON dict if successful, None if parsing failed
        provider: Provider name (e.g., 'openai')
        model: Model name (e.g., 'gpt-4o-mini')
        tokens_in: Input tokens used (None if provider doesn't report)
        tokens_out: Output tokens used (None if provider doesn't report)
        latency_ms: Latency in milliseconds
        cost_micros: Metered cost in micro-USD (0 if unknown)
        warnings: List of non-critical warnings
    """
    raw_output: str
    parsed_json: Optional[dict]
    provider: str
    model: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    latency_ms: int = 0
    cost_micros: int = 0
    warnings: list[str] = field(default_factory=list)


class LLMProviderPort(ABC):
    """
    Abstract interface for chat-completion LLM providers.

    Implementations must handle:
    - API authentication
    - JSON-mode request formatting
    - Error mapping (timeouts, rate limits, auth, service errors)
    - Token/cost tracking
    """

    @abstractmethod
    def complete_json(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 300,
        system_prompt: Optional[str] = None
    ) -> LLMCompletion:
        """
        Send a prompt and ask for a single JSON object back.

        Args:
            prompt: User prompt
            model: Model name
            temperature: Sampling temperature
            max_tokens: Completion token limit
            system_prompt: Optional system message

        Returns:
            LLMCompletion; parsed_json is None when the output was not valid JSON

        Raises:
            LLMTimeoutError: Request timed out
            LLMRateLimitError: Rate limit exceeded
            LLMAuthError: Authentication failed
            LLMServiceError: Provider service unavailable
        """
        pass


@dataclass
class WebSearchResult:
    title: str
    url: str
    content: str
    score: float = 0.0


@dataclass
class WebSearchResponse:
    query: str
    results: list[WebSearchResult] = field(default_factory=list)
    answer: Optional[str] = None


class WebSearchPort(ABC):
    """Abstract interface for web-search providers (Tavily)."""

    @abstractmethod
    def search(
        self,
        query: str,
        max_results: int = 10,
        search_depth: str = "advanced",
        include_answer: bool = True,
        include_domains: Optional[list[str]] = None
    ) -> WebSearchResponse:
        """
        Run one web search.

        Raises:
            WebSearchTimeoutError: Request timed out
            WebSearchRateLimitError: Rate limit exceeded
            WebSearchAuthError: Authentication failed
            WebSearchServiceError: Provider unavailable or returned an error
        """
        pass


# Custom exceptions for LLM operations
class LLMError(Exception):
    """Base exception for LLM operations"""
    pass


class LLMTimeoutError(LLMError):
    """LLM request timed out"""
    pass


class LLMRateLimitError(LLMError):
    """Rate limit exceeded"""
    pass


class LLMAuthError(LLMError):
    """Authentication failed"""
    pass


class LLMServiceError(LLMError):
    """Provider service unavailable or returned error"""
    pass


# Custom exceptions for web-search operations
class WebSearchError(Exception):
    """Base exception for web-search operations"""
    pass


class WebSearchTimeoutError(WebSearchError):
    pass


class WebSearchRateLimitError(WebSearchError):
    pass


class WebSearchAuthError(WebSearchError):
    pass


class WebSearchServiceError(WebSearchError):
    pass
