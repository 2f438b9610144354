#!/usr/bin/env python3
"""Run the extraction pipeline over a directory of document text files.

Each ``*.txt`` file is treated as the plain-text rendering of one invoice.
Prints one line per document and a summary; optionally writes all results
to a JSON file and the run's Prometheus metrics to a text file.

Usage:
    python scripts/extract_invoices.py data/texts --workers 2 --json results.json \
        --metrics metrics/invoicebot.prom

Requirements:
    - An oracle server reachable as configured (INVOICEBOT_ORACLE_* variables)
"""

import json
import logging
from pathlib import Path

from invoicebot.batch.runner import ProcessingResult, process_documents, summarize
from invoicebot.extraction.metrics import get_metrics
from invoicebot.extraction.pipeline import InvoicePipeline
from invoicebot.extraction.schema import describe_score
from invoicebot.oracle.factory import create_gateway
from invoicebot.shared.config import get_settings

logger = logging.getLogger(__name__)


def load_documents(directory: Path) -> list[tuple[str, str]]:
    """Read all .txt files in a directory, sorted by name.

    Args:
        directory: Directory containing document text files

    Returns:
        (file name, text) pairs
    """
    return [
        (path.name, path.read_text(encoding="utf-8"))
        for path in sorted(directory.glob("*.txt"))
    ]


def format_result(result: ProcessingResult) -> str:
    """One-line description of a processed document."""
    if result.status != "completed" or result.record is None:
        return f"{result.document_name}: {result.status.upper()} {result.error or ''}".rstrip()
    record = result.record
    return (
        f"{result.document_name}: score {result.trust_score} ({describe_score(result.trust_score)}) "
        f"| {record.vendor_name} | {record.invoice_number} | {record.invoice_date} "
        f"| net {record.net_amount} | gross {record.gross_amount}"
    )


def write_results(results: list[ProcessingResult], output: Path) -> None:
    """Write results as a JSON array."""
    output.parent.mkdir(parents=True, exist_ok=True)
    payload = [
        result.model_dump(mode="json") | {"accepted": result.accepted} for result in results
    ]
    output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")


def write_metrics(output: Path) -> None:
    """Write the Prometheus exposition of this run, e.g. for a textfile collector."""
    body, _ = get_metrics()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(body)


def main() -> None:
    """Parse arguments and run the batch."""
    import argparse

    parser = argparse.ArgumentParser(description="Extract invoice fields from text files")
    parser.add_argument("directory", type=Path, help="Directory with *.txt documents")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Documents processed concurrently (default: INVOICEBOT_BATCH_MAX_WORKERS)",
    )
    parser.add_argument("--json", type=Path, default=None, help="Write results to this file")
    parser.add_argument(
        "--metrics", type=Path, default=None, help="Write Prometheus metrics to this file"
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")

    gateway = create_gateway(settings)
    if not gateway.is_reachable():
        logger.warning(f"Oracle gateway '{gateway.provider_name}' is not reachable")

    documents = load_documents(args.directory)
    logger.info(f"Found {len(documents)} documents in {args.directory}")

    def report(done: int, total: int, result: ProcessingResult) -> None:
        print(f"[{done}/{total}] {format_result(result)}")

    results = process_documents(
        InvoicePipeline.from_settings(settings, gateway),
        documents,
        max_workers=args.workers or settings.batch_max_workers,
        on_progress=report,
    )

    summary = summarize(results)
    print("=" * 80)
    print(f"Accepted (trust >= {settings.trust_threshold}): {summary.accepted}")
    print(f"Below threshold: {summary.low_score}")
    print(f"Failed: {summary.failed}")
    print("=" * 80)

    if args.json:
        write_results(results, args.json)
        logger.info(f"Saved {len(results)} results to {args.json}")

    if args.metrics:
        write_metrics(args.metrics)
        logger.info(f"Saved metrics to {args.metrics}")


if __name__ == "__main__":
    main()
