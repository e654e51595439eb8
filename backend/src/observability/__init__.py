"""Observability module for PartMatch.

Provides structured logging, correlation ids and Prometheus metrics.
"""

from .logging_config import configure_logging
from .metrics import (
    candidates_created_total,
    candidates_blocked_total,
    match_confidence_histogram,
    job_chunks_total,
    job_chunk_duration_seconds,
    jobs_processing,
    llm_calls_total,
    llm_latency_ms,
    web_searches_total,
    web_search_latency_ms,
    estimated_cost_micros_total,
    llm_metered_cost_micros_total,
    llm_tokens_total,
)
from .request_id import get_request_id, set_request_id, generate_request_id, get_job_id, set_job_id
from .middleware import RequestIDMiddleware

__all__ = [
    "configure_logging",
    "candidates_created_total",
    "candidates_blocked_total",
    "match_confidence_histogram",
    "job_chunks_total",
    "job_chunk_duration_seconds",
    "jobs_processing",
    "llm_calls_total",
    "llm_latency_ms",
    "web_searches_total",
    "web_search_latency_ms",
    "estimated_cost_micros_total",
    "llm_metered_cost_micros_total",
    "llm_tokens_total",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
    "get_job_id",
    "set_job_id",
    "RequestIDMiddleware",
]
