"""German VAT arithmetic shared by the trust scorer and the pipeline.

Two rates are known: 19% (standard) and 7% (reduced). Rounding on printed
invoices is absorbed by a fixed tolerance.
"""

import logging
from decimal import Decimal, localcontext

from invoicebot.extraction.normalizer import parse_amount
from invoicebot.extraction.schema import InvoiceRecord

logger = logging.getLogger(__name__)

STANDARD_RATE = Decimal("1.19")
REDUCED_RATE = Decimal("1.07")
VAT_RATES = (STANDARD_RATE, REDUCED_RATE)

VAT_TOLERANCE = Decimal("0.50")
CENT_TOLERANCE = Decimal("0.01")

GERMAN_MARKERS = (
    "mwst",
    "mehrwertsteuer",
    "umsatzsteuer",
    "€",
    "eur",
    "netto",
    "brutto",
    "zwischensumme",
    "gesamtbetrag",
)


def matches_vat(net_amount: str | None, gross_amount: str | None) -> bool:
    """Check whether gross equals net plus 19% or 7% VAT, within 0.50.

    Args:
        net_amount: Amount before tax
        gross_amount: Amount after tax

    Returns:
        True if either rate reconciles the two amounts
    """
    net = parse_amount(net_amount)
    gross = parse_amount(gross_amount)
    if net is None or gross is None:
        return False
    return any(abs(gross - net * rate) <= VAT_TOLERANCE for rate in VAT_RATES)


def looks_german(text: str) -> bool:
    """Check the source text for German VAT or euro markers."""
    lowered = text.lower()
    return any(marker in lowered for marker in GERMAN_MARKERS)


def has_gross_without_net(record: InvoiceRecord) -> bool:
    """True when the gross amount is set but the net amount is missing or zero."""
    if not record.gross_amount:
        return False
    net = record.net_amount
    if net is None or not net.strip():
        return True
    amount = parse_amount(net)
    return amount is None or amount == 0


def _cent_remainder(value: Decimal) -> Decimal:
    return (value * 100) % 1


def _lands_on_cent(value: Decimal) -> bool:
    remainder = _cent_remainder(value)
    return remainder < CENT_TOLERANCE or remainder > 1 - CENT_TOLERANCE


def derive_net_from_gross(gross_amount: str) -> tuple[Decimal, Decimal] | None:
    """Back-calculate a net amount from a gross amount.

    Divides by 1.19 and by 1.07 and picks the rate whose result lands on a
    whole cent. Falls back to 19% when neither does.

    Args:
        gross_amount: Gross amount string

    Returns:
        (net, rate) tuple, or None if the gross amount cannot be parsed
    """
    gross = parse_amount(gross_amount)
    if gross is None:
        return None

    # Keep every integer digit plus the cents under division and modulo
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, gross.adjusted() + 10)
        for rate in VAT_RATES:
            net = gross / rate
            if _lands_on_cent(net):
                logger.info(f"Detected {rate - 1:.0%} VAT for gross amount {gross_amount}")
                return net, rate

        logger.info(f"No VAT rate lands on a whole cent for {gross_amount}, defaulting to 19%")
        return gross / STANDARD_RATE, STANDARD_RATE
