"""Prometheus metrics."""

from prometheus_client import Counter

# HTTP metrics
REQUESTS_TOTAL = Counter(
    "castflow_http_requests_total",
    "Total number of HTTP requests",
    labelnames=["method", "path"],
)

RESPONSES_TOTAL = Counter(
    "castflow_http_responses_total",
    "Total number of HTTP responses",
    labelnames=["status_code"],
)

# Pipeline metrics
JOBS_TOTAL = Counter(
    "castflow_jobs_total",
    "Jobs processed per stage",
    labelnames=["stage", "status"],
)

JOBS_ENQUEUED_TOTAL = Counter(
    "castflow_jobs_enqueued_total",
    "Jobs enqueued per stage",
    labelnames=["stage"],
)

AI_ATTEMPTS_TOTAL = Counter(
    "castflow_ai_attempts_total",
    "AI invocation attempts by outcome",
    labelnames=["outcome"],
)

CACHE_REQUESTS_TOTAL = Counter(
    "castflow_cache_requests_total",
    "Result cache lookups",
    labelnames=["prefix", "result"],
)
