"""
Cost Calculator - Token pricing and micro-USD conversions.

Stages charge fixed per-operation estimates to the cost ledger; the metered
token cost reported here is recorded alongside as the
partmatch_llm_metered_cost_micros_total counter for comparison.
"""

from typing import Dict, Tuple


class CostCalculator:
    """
    Calculate LLM API costs based on provider pricing.

    Pricing stored as USD per million tokens; results are micro-USD integers.
    """

    # Pricing in USD per 1M tokens (input, output)
    PRICING: Dict[str, Dict[str, Tuple[float, float]]] = {
        "openai": {
            "gpt-4o-mini": (0.150, 0.600),
            "gpt-4o": (2.50, 10.00),
            "gpt-4-turbo": (10.00, 30.00),
        },
    }

    @staticmethod
    def calculate_cost_micros(
        provider: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int
    ) -> int:
        """
        Calculate cost in micro-USD (1/1,000,000 USD).

        Raises:
            ValueError: If provider or model not found in pricing table

        Example:
            >>> CostCalculator.calculate_cost_micros("openai", "gpt-4o-mini", 1000, 500)
            450
        """
        input_rate, output_rate = CostCalculator.get_model_pricing(provider, model)

        total_cost_usd = (prompt_tokens * input_rate + completion_tokens * output_rate) / 1_000_000

        return int(round(total_cost_usd * 1_000_000))

    @staticmethod
    def get_model_pricing(provider: str, model: str) -> Tuple[float, float]:
        """
        Returns:
            (input_rate, output_rate) in USD per 1M tokens

        Raises:
            ValueError: If provider or model not found
        """
        provider_pricing = CostCalculator.PRICING.get(provider.lower())
        if provider_pricing is None:
            raise ValueError(f"Unknown provider: {provider}")

        rates = provider_pricing.get(model.lower())
        if rates is None:
            raise ValueError(f"Unknown model for {provider}: {model}")

        return rates

