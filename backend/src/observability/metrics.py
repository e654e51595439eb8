"""Prometheus metrics for PartMatch.

Defines and exposes operational metrics for monitoring and alerting.
"""

from typing import Optional

from prometheus_client import Counter, Histogram, Gauge

# Candidate metrics
candidates_created_total = Counter(
    "partmatch_candidates_created_total",
    "Total match candidates written",
    ["method"]  # method: MASTER_RULE|EXACT_NORMALIZED|INTERCHANGE|FUZZY|AI|WEB_SEARCH|SUPERSESSION
)

candidates_blocked_total = Counter(
    "partmatch_candidates_blocked_total",
    "Candidates removed or refused by NEGATIVE_BLOCK rules",
    ["source"]  # source: rule_engine|writer
)

match_confidence_histogram = Histogram(
    "partmatch_match_confidence",
    "Match confidence distribution",
    ["method"],
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

# Job metrics
job_chunks_total = Counter(
    "partmatch_job_chunks_total",
    "Job chunks executed",
    ["job_type", "outcome"]  # outcome: continued|completed|paused|cancelled|failed|discarded
)

job_chunk_duration_seconds = Histogram(
    "partmatch_job_chunk_duration_seconds",
    "Time spent on one job chunk in seconds",
    ["job_type"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

jobs_processing = Gauge(
    "partmatch_jobs_processing",
    "Number of jobs currently in processing state"
)

# External call metrics
llm_calls_total = Counter(
    "partmatch_llm_calls_total",
    "Total LLM API calls",
    ["model", "status"]  # status: success|timeout|rate_limited|auth_error|service_error
)

llm_latency_ms = Histogram(
    "partmatch_llm_latency_ms",
    "LLM API call latency in milliseconds",
    ["model"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000]
)

web_searches_total = Counter(
    "partmatch_web_searches_total",
    "Total web-search API calls",
    ["status"]
)

web_search_latency_ms = Histogram(
    "partmatch_web_search_latency_ms",
    "Web-search call latency in milliseconds",
    buckets=[100, 250, 500, 1000, 2500, 5000, 10000, 30000]
)

estimated_cost_micros_total = Counter(
    "partmatch_estimated_cost_micros_total",
    "Estimated spend in micros (1 micro = 0.000001 USD)",
    ["operation"]  # operation: ai_match|web_search|supersession
)

llm_metered_cost_micros_total = Counter(
    "partmatch_llm_metered_cost_micros_total",
    "Provider-metered LLM cost in micros, tracked next to the estimate",
    ["operation"]
)

llm_tokens_total = Counter(
    "partmatch_llm_tokens_total",
    "Tokens reported by the LLM provider",
    ["operation", "direction"]  # direction: in|out
)


def record_candidate(method: str, confidence: float) -> None:
    candidates_created_total.labels(method=method).inc()
    match_confidence_histogram.labels(method=method).observe(confidence)


def record_llm_call(model: str, status: str, latency_ms: Optional[int] = None) -> None:
    llm_calls_total.labels(model=model, status=status).inc()
    if latency_ms is not None:
        llm_latency_ms.labels(model=model).observe(latency_ms)


def record_llm_usage(operation: str, completion) -> None:
    """Record token usage and metered cost of one LLMCompletion."""
    if completion.tokens_in:
        llm_tokens_total.labels(operation=operation, direction="in").inc(completion.tokens_in)
    if completion.tokens_out:
        llm_tokens_total.labels(operation=operation, direction="out").inc(completion.tokens_out)
    if completion.cost_micros:
        llm_metered_cost_micros_total.labels(operation=operation).inc(completion.cost_micros)


def record_web_search(status: str, latency_ms: Optional[int] = None) -> None:
    web_searches_total.labels(status=status).inc()
    if latency_ms is not None:
        web_search_latency_ms.observe(latency_ms)
