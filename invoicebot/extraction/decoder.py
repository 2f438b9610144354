"""Decoding of oracle responses into canonical models.

The oracle gateway strips Markdown code fences before a response reaches
this module, so every input here is expected to be a bare JSON object.

Primary extraction responses are strict: malformed JSON raises DecodeError.
Validation and quality-check responses are tolerant: malformed JSON yields a
result with confidence 'error' and the pipeline carries on.
"""

import json
import logging
from typing import Any

from invoicebot.extraction.errors import DecodeError
from invoicebot.extraction.normalizer import normalize_amount, normalize_date, normalize_period
from invoicebot.extraction.schema import (
    InvoiceRecord,
    LineItem,
    QualityCheckResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

CONFIDENCE_TIERS = ("high", "medium", "low")
RECOMMENDATIONS = ("keep_extracted_data", "use_corrections")


def _load_object(json_text: str) -> dict[str, Any]:
    """Parse JSON text that must contain an object.

    Raises:
        DecodeError: If the text is not valid JSON or not an object
    """
    try:
        payload = json.loads(json_text)
    except (ValueError, TypeError, RecursionError) as e:
        raise DecodeError(f"Invalid JSON in oracle response: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _text(payload: dict[str, Any], key: str) -> str | None:
    """Read an optional string value; JSON null and missing keys become None."""
    value = payload.get(key)
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _flag(payload: dict[str, Any], key: str) -> bool:
    value = payload.get(key, False)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _confidence(payload: dict[str, Any]) -> str:
    value = (_text(payload, "confidence") or "low").strip().lower()
    return value if value in CONFIDENCE_TIERS else "low"


def decode_invoice(json_text: str) -> InvoiceRecord:
    """Decode a stage 1/2 extraction response into a canonical record.

    Args:
        json_text: Oracle response with keys company_name, invoice_number,
            invoice_date, net_amount, gross_amount, service_period

    Returns:
        InvoiceRecord with dates, amounts and period normalized

    Raises:
        DecodeError: If the response is not a JSON object
    """
    payload = _load_object(json_text)
    return InvoiceRecord(
        vendor_name=_text(payload, "company_name"),
        invoice_number=_text(payload, "invoice_number"),
        invoice_date=normalize_date(_text(payload, "invoice_date")),
        net_amount=normalize_amount(_text(payload, "net_amount")),
        gross_amount=normalize_amount(_text(payload, "gross_amount")),
        service_period=normalize_period(_text(payload, "service_period")),
    )


def _decode_positions(payload: dict[str, Any]) -> tuple[LineItem, ...]:
    raw_positions = payload.get("positions_found")
    if not isinstance(raw_positions, list):
        return ()
    return tuple(
        LineItem(
            net=normalize_amount(_text(position, "net")),
            tax_rate=_text(position, "tax_rate"),
            gross_calculated=normalize_amount(_text(position, "gross_calculated")),
        )
        for position in raw_positions
        if isinstance(position, dict)
    )


def decode_validation(json_text: str) -> ValidationResult:
    """Decode a stage 3 recalculation response.

    Never raises: an unreadable response becomes a result with no amounts,
    matches=False and confidence 'error'.
    """
    try:
        payload = _load_object(json_text)
    except DecodeError as e:
        logger.warning(f"Validation response could not be decoded: {e}")
        return ValidationResult(matches=False, confidence="error")

    return ValidationResult(
        recalculated_net=normalize_amount(_text(payload, "recalculated_net")),
        recalculated_gross=normalize_amount(_text(payload, "recalculated_gross")),
        matches=_flag(payload, "calculation_matches"),
        confidence=_confidence(payload),
        has_mixed_tax_rates=_flag(payload, "has_mixed_tax_rates"),
        positions=_decode_positions(payload),
    )


def format_issue(issue: dict[str, Any]) -> str:
    """Render one quality-check issue as ``field: issue (should be: value)``."""
    field = _text(issue, "field") or "unknown"
    description = _text(issue, "issue") or ""
    should_be = _text(issue, "should_be")
    if should_be:
        return f"{field}: {description} (should be: {should_be})"
    return f"{field}: {description}"


def decode_quality_check(json_text: str) -> QualityCheckResult:
    """Decode a stage 4 self-check response.

    Never raises: an unreadable response becomes a result with
    all_correct=False, confidence 'error', recommendation
    'keep_extracted_data' and no issues.
    """
    try:
        payload = _load_object(json_text)
    except DecodeError as e:
        logger.warning(f"Quality check response could not be decoded: {e}")
        return QualityCheckResult(
            all_correct=False, confidence="error", recommendation="keep_extracted_data"
        )

    recommendation = (_text(payload, "recommendation") or "").strip().lower()
    if recommendation not in RECOMMENDATIONS:
        recommendation = "keep_extracted_data"

    raw_issues = payload.get("issues_found")
    issues = (
        tuple(format_issue(issue) for issue in raw_issues if isinstance(issue, dict))
        if isinstance(raw_issues, list)
        else ()
    )

    return QualityCheckResult(
        all_correct=_flag(payload, "all_correct"),
        confidence=_confidence(payload),
        recommendation=recommendation,
        issues=issues,
    )
