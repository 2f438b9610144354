"""Prometheus metrics for the extraction pipeline.

Exposes:
- Pipeline runs by outcome (accepted, rejected, failed)
- Stage invocations, to see how often escalation happens
- Trust score distribution
- Oracle request counts and latency by provider

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Pipeline metrics
pipeline_runs_total = Counter(
    "invoice_pipeline_runs_total",
    "Total pipeline invocations",
    ["outcome"],  # accepted, rejected, failed
)

pipeline_stage_invocations_total = Counter(
    "invoice_pipeline_stage_invocations_total",
    "Total oracle-backed stage invocations",
    ["stage"],  # extract, retry, recalculate, quality_check
)

pipeline_trust_score = Histogram(
    "invoice_pipeline_trust_score",
    "Trust score of records returned by the pipeline",
    buckets=(0, 50, 85, 95),
)

pipeline_duration_seconds = Histogram(
    "invoice_pipeline_duration_seconds",
    "Pipeline duration per document in seconds",
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Oracle metrics
oracle_requests_total = Counter(
    "oracle_requests_total",
    "Total oracle generation requests",
    ["provider", "status"],  # success, failed
)

oracle_request_duration_seconds = Histogram(
    "oracle_request_duration_seconds",
    "Oracle generation request duration in seconds",
    ["provider"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 150.0),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
