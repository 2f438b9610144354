"""Trust scoring for extracted invoice records.

The score is a step function with three values:

- 0: a required field is missing, a placeholder, or implausible
- 85: vendor, invoice number, invoice date and net amount are present and plausible
- 95: additionally, the gross amount reconciles with the net amount at 19% or 7% VAT

Checks short-circuit on the first failure. Scoring has no side effects
apart from DEBUG logging.
"""

import logging
import re

from invoicebot.extraction.normalizer import parse_amount
from invoicebot.extraction.schema import InvoiceRecord, TrustScore
from invoicebot.extraction.vat import matches_vat

logger = logging.getLogger(__name__)

PLACEHOLDER_TOKENS = frozenset({"n/a", "null", "unknown", "-", "?", "0", "nicht vorhanden"})

DATE_SEPARATOR = re.compile(r"[./-]")
DIGIT = re.compile(r"\d")
ALPHANUMERIC = re.compile(r"[A-Za-z0-9]")
NON_LETTER = re.compile(r"[^A-Za-zÄÖÜäöüß]")


def is_blank(value: str | None) -> bool:
    """True for None, whitespace, or a placeholder token like 'n/a'."""
    if value is None or not value.strip():
        return True
    return value.strip().lower() in PLACEHOLDER_TOKENS


def is_zero_amount(value: str | None) -> bool:
    """True when an amount is missing, has no digits, or equals zero."""
    if value is None:
        return True
    amount = parse_amount(value)
    if amount is None:
        return not DIGIT.search(value)
    return amount == 0


def is_plausible_vendor(name: str) -> bool:
    """At least two letters once everything else is stripped."""
    stripped = name.strip()
    if len(stripped) < 2:
        return False
    if sum(1 for char in stripped if char.isalpha()) < 2:
        return False
    return len(NON_LETTER.sub("", stripped)) >= 2


def is_plausible_invoice_number(number: str) -> bool:
    """At least two characters, one of them alphanumeric."""
    return len(number.strip()) >= 2 and ALPHANUMERIC.search(number) is not None


def is_plausible_date(value: str) -> bool:
    """Contains a digit and one of the separators '.', '/' or '-'."""
    return DATE_SEPARATOR.search(value) is not None and DIGIT.search(value) is not None


def score(record: InvoiceRecord | None) -> int:
    """Compute the trust score of a record.

    Args:
        record: Record to score

    Returns:
        0, 85 or 95
    """
    if record is None:
        return TrustScore.REJECTED

    required = {
        "vendor_name": record.vendor_name,
        "invoice_number": record.invoice_number,
        "invoice_date": record.invoice_date,
        "net_amount": record.net_amount,
    }
    for field, value in required.items():
        if is_blank(value):
            logger.debug(f"Trust check failed: {field} is missing")
            return TrustScore.REJECTED

    if is_zero_amount(record.net_amount):
        logger.debug("Trust check failed: net amount is zero")
        return TrustScore.REJECTED

    if not is_plausible_vendor(record.vendor_name):
        logger.debug(f"Trust check failed: implausible vendor name {record.vendor_name!r}")
        return TrustScore.REJECTED

    if not is_plausible_invoice_number(record.invoice_number):
        logger.debug(f"Trust check failed: implausible invoice number {record.invoice_number!r}")
        return TrustScore.REJECTED

    if not is_plausible_date(record.invoice_date):
        logger.debug(f"Trust check failed: implausible invoice date {record.invoice_date!r}")
        return TrustScore.REJECTED

    if not DIGIT.search(record.net_amount):
        logger.debug("Trust check failed: net amount contains no digits")
        return TrustScore.REJECTED

    if not is_blank(record.gross_amount) and not is_zero_amount(record.gross_amount):
        if matches_vat(record.net_amount, record.gross_amount):
            return TrustScore.VAT_VERIFIED

    return TrustScore.COMPLETE
