"""AI Infrastructure - Adapters for LLM and web-search providers.

This module contains concrete implementations of AI domain ports.
"""

from .openai_provider import OpenAIProvider
from .tavily_search import TavilySearchProvider
from .cost_calculator import CostCalculator

__all__ = [
    "OpenAIProvider",
    "TavilySearchProvider",
    "CostCalculator",
]
