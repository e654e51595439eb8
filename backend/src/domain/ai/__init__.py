"""AI domain layer - Ports for LLM/web-search providers and the cost ledger"""

from .ports import LLMProviderPort, LLMCompletion
from .ports import (
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMAuthError,
    LLMServiceError,
    WebSearchPort,
    WebSearchResponse,
    WebSearchResult,
    WebSearchError,
    WebSearchTimeoutError,
    WebSearchRateLimitError,
    WebSearchAuthError,
    WebSearchServiceError,
)
from .cost_ledger import CostLedger

__all__ = [
    "LLMProviderPort",
    "LLMCompletion",
    "LLMError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMServiceError",
    "WebSearchPort",
    "WebSearchResponse",
    "WebSearchResult",
    "WebSearchError",
    "WebSearchTimeoutError",
    "WebSearchRateLimitError",
    "WebSearchAuthError",
    "WebSearchServiceError",
    "CostLedger",
]
