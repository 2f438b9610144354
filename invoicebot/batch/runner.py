"""Batch processing of many documents through the extraction pipeline.

Documents are independent: a failure or cancellation affects only the
document it happens to. By default documents run one after another,
with progress reported after each. ``max_workers > 1`` spreads them over
a thread pool, sized to what the oracle server tolerates.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Literal

from pydantic import BaseModel

from invoicebot.extraction.errors import PipelineError
from invoicebot.extraction.pipeline import InvoicePipeline
from invoicebot.extraction.schema import InvoiceRecord, TrustScore

logger = logging.getLogger(__name__)


class ProcessingResult(BaseModel):
    """Result of processing one document.

    Attributes:
        document_name: Name the caller gave the document (e.g. its file name)
        status: completed, failed or cancelled
        record: Final record (if completed)
        trust_score: Trust score of the final record (0 unless completed)
        error: Error message (if failed)
        accept_threshold: Score at which the record counts as accepted
    """

    document_name: str
    status: Literal["completed", "failed", "cancelled"]
    record: InvoiceRecord | None = None
    trust_score: int = 0
    error: str | None = None
    accept_threshold: int = TrustScore.COMPLETE

    @property
    def accepted(self) -> bool:
        """Whether the record should be exported."""
        return self.status == "completed" and self.trust_score >= self.accept_threshold


class BatchSummary(BaseModel):
    """Counts over a batch run."""

    total: int
    accepted: int
    low_score: int
    failed: int
    cancelled: int


ProgressCallback = Callable[[int, int, ProcessingResult], None]


def summarize(results: Iterable[ProcessingResult]) -> BatchSummary:
    """Count accepted, low-score, failed and cancelled documents."""
    results = list(results)
    completed = [r for r in results if r.status == "completed"]
    accepted = sum(1 for r in completed if r.accepted)
    return BatchSummary(
        total=len(results),
        accepted=accepted,
        low_score=len(completed) - accepted,
        failed=sum(1 for r in results if r.status == "failed"),
        cancelled=sum(1 for r in results if r.status == "cancelled"),
    )


def process_document(
    pipeline: InvoicePipeline,
    document_name: str,
    text: str,
    cancel_event: threading.Event | None = None,
) -> ProcessingResult:
    """Run the pipeline on one document, converting failures into a result.

    Args:
        pipeline: Configured pipeline
        document_name: Name to report the document under
        text: Plain-text rendering of the document
        cancel_event: When set before the document starts, it is skipped

    Returns:
        ProcessingResult with status completed, failed or cancelled
    """
    if cancel_event is not None and cancel_event.is_set():
        logger.info(f"Skipping {document_name}: batch cancelled")
        return ProcessingResult(document_name=document_name, status="cancelled")

    logger.info(f"Processing {document_name}")
    try:
        result = pipeline.run(text)
    except PipelineError as e:
        logger.warning(f"Document {document_name} failed: {e}")
        return ProcessingResult(document_name=document_name, status="failed", error=str(e))
    except Exception as e:
        logger.exception(f"Document {document_name} failed with unexpected error: {e}")
        return ProcessingResult(document_name=document_name, status="failed", error=str(e))

    return ProcessingResult(
        document_name=document_name,
        status="completed",
        record=result.record,
        trust_score=result.trust_score,
        accept_threshold=pipeline.trust_threshold,
    )


def process_documents(
    pipeline: InvoicePipeline,
    documents: Iterable[tuple[str, str]],
    *,
    max_workers: int = 1,
    on_progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
) -> list[ProcessingResult]:
    """Process a batch of documents.

    Args:
        pipeline: Configured pipeline
        documents: (name, text) pairs
        max_workers: Documents processed concurrently (1 = sequential)
        on_progress: Called as on_progress(done, total, result) after each document
        cancel_event: Set it to skip all documents that have not started yet

    Returns:
        One ProcessingResult per document, in input order
    """
    documents = list(documents)
    total = len(documents)
    results: list[ProcessingResult | None] = [None] * total
    done = 0
    lock = threading.Lock()

    def handle(index: int, name: str, text: str) -> None:
        nonlocal done
        result = process_document(pipeline, name, text, cancel_event)
        with lock:
            results[index] = result
            done += 1
            if on_progress is not None:
                on_progress(done, total, result)

    if max_workers <= 1:
        for index, (name, text) in enumerate(documents):
            handle(index, name, text)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(handle, index, name, text)
                for index, (name, text) in enumerate(documents)
            ]
            for future in futures:
                future.result()

    summary = summarize(r for r in results if r is not None)
    logger.info(
        f"Batch finished: {summary.accepted} accepted, {summary.low_score} below threshold, "
        f"{summary.failed} failed, {summary.cancelled} cancelled"
    )
    return [r for r in results if r is not None]
