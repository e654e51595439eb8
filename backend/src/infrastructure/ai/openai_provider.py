"""
OpenAI Provider - Concrete implementation of LLMProviderPort for OpenAI.

JSON-mode chat completions for the AI, web-search and supersession stages
(gpt-4o, gpt-4o-mini).
"""

import time
import json
import logging
from typing import Optional

from openai import OpenAI, APIError, RateLimitError, APIConnectionError, APITimeoutError, AuthenticationError

from config import settings
from domain.ai.ports import (
    LLMProviderPort,
    LLMCompletion,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMAuthError,
    LLMServiceError,
)
from observability.metrics import record_llm_call
from .cost_calculator import CostCalculator

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProviderPort):
    """
    OpenAI implementation of LLMProviderPort.

    Uses OpenAI Python SDK (v1.x+) with structured output (JSON mode).
    SDK exceptions are mapped to the LLM error hierarchy so workers can
    tell transient failures from fatal ones.
    """

    def __init__(self, api_key: Optional[str] = None, timeout_seconds: float = 30.0):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (defaults to settings.OPENAI_API_KEY)
            timeout_seconds: Per-request timeout

        Raises:
            ValueError: If API key is not provided
        """
        self.api_key = api_key or settings.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError("OpenAI API key not provided. Set OPENAI_API_KEY environment variable.")

        self.client = OpenAI(api_key=self.api_key)
        self.timeout_seconds = timeout_seconds

    def complete_json(
        self,
        prompt: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 300,
        system_prompt: Optional[str] = None
    ) -> LLMCompletion:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        start_time = time.perf_counter()
        warnings = []

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=self.timeout_seconds
            )

            latency_ms = int((time.perf_counter() - start_time) * 1000)

            raw_output = response.choices[0].message.content or ""

            # Malformed output is reported, not raised; stages treat it as no match
            parsed_json = None
            try:
                parsed = json.loads(raw_output)
                if isinstance(parsed, dict):
                    parsed_json = parsed
                else:
                    warnings.append("LLM JSON output is not an object")
            except json.JSONDecodeError as e:
                warnings.append(f"Failed to parse LLM JSON output: {str(e)}")

            usage = response.usage
            prompt_tokens = usage.prompt_tokens if usage else None
            completion_tokens = usage.completion_tokens if usage else None

            cost_micros = 0
            if prompt_tokens and completion_tokens:
                try:
                    cost_micros = CostCalculator.calculate_cost_micros(
                        provider="openai",
                        model=model,
                        prompt_tokens=prompt_tokens,
                        completion_tokens=completion_tokens
                    )
                except ValueError as e:
                    warnings.append(f"Failed to calculate cost: {str(e)}")

            record_llm_call(model=model, status="success", latency_ms=latency_ms)

            return LLMCompletion(
                raw_output=raw_output,
                parsed_json=parsed_json,
                provider="openai",
                model=model,
                tokens_in=prompt_tokens,
                tokens_out=completion_tokens,
                latency_ms=latency_ms,
                cost_micros=cost_micros,
                warnings=warnings
            )

        except APITimeoutError as e:
            record_llm_call(model=model, status="timeout")
            raise LLMTimeoutError(f"OpenAI API timeout: {str(e)}")

        except RateLimitError as e:
            record_llm_call(model=model, status="rate_limited")
            raise LLMRateLimitError(f"OpenAI rate limit exceeded: {str(e)}")

        except AuthenticationError as e:
            record_llm_call(model=model, status="auth_error")
            raise LLMAuthError(f"OpenAI authentication failed: {str(e)}")

        except (APIConnectionError, APIError) as e:
            record_llm_call(model=model, status="service_error")
            raise LLMServiceError(f"OpenAI service error: {str(e)}")
