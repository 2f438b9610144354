"""Unit tests for Prometheus metrics."""

from invoicebot.extraction import metrics
from invoicebot.extraction.pipeline import InvoicePipeline


def test_get_metrics_exposes_pipeline_metrics() -> None:
    """Pipeline and oracle metrics appear in the exposition output."""
    InvoicePipeline(lambda prompt: "{}").run("text")

    body, content_type = metrics.get_metrics()
    text = body.decode()

    assert "invoice_pipeline_runs_total" in text
    assert 'invoice_pipeline_stage_invocations_total{stage="quality_check"}' in text
    assert "invoice_pipeline_trust_score" in text
    assert "oracle_requests_total" in text
    assert content_type.startswith("application/openmetrics-text")


def test_rejected_run_is_counted() -> None:
    """A run ending below the trust threshold counts as rejected."""
    counter = metrics.pipeline_runs_total.labels(outcome="rejected")
    before = counter._value.get()

    InvoicePipeline(lambda prompt: "{}").run("text")

    assert counter._value.get() == before + 1
