"""Prometheus metrics for the API and the OCR pipeline.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- OCR job outcomes and per-step durations
- Extraction token usage

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Pipeline metrics
ocr_jobs_total = Counter(
    "ocr_jobs_total",
    "Total OCR jobs by outcome",
    ["status"],  # completed, failed, rejected
)

pipeline_step_duration_seconds = Histogram(
    "pipeline_step_duration_seconds",
    "Duration of a single pipeline step in seconds",
    ["step", "status"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0),
)

extraction_tokens_total = Counter(
    "extraction_tokens_total",
    "Tokens consumed by structured extraction",
    ["provider", "kind"],  # prompt, completion
)

invoices_routed_total = Counter(
    "invoices_routed_total",
    "Invoices saved by the pipeline, by resulting status",
    ["status"],  # EXTRACTED, NEEDS_REVIEW
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
