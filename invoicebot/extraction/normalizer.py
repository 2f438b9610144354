"""Canonicalization of raw date and amount strings.

Canonical forms:
- date: ``dd.mm.yyyy``
- amount: German grouping with two decimals and a currency suffix, ``1.234,56€``
- service period: a canonical date, or ``start-end`` of two canonical dates

Every function here returns its input unchanged when it cannot make sense of
it; none of them raise.
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

CANONICAL_DATE_FORMAT = "%d.%m.%Y"
CANONICAL_DATE_PATTERN = re.compile(r"^\d{2}\.\d{2}\.\d{4}$")

# Tried in order, first match wins
DATE_FORMATS = (
    "%B %d, %Y",  # January 15, 2024
    "%b, %d, %Y",  # Jan, 15, 2024
    "%b %d, %Y",  # Jan 15, 2024
    "%m/%d/%Y",  # 1/15/2024
    "%d %b %Y",  # 15 Jan 2024
    "%d.%m.%Y",  # 15.01.2024
)
# Long English month names, tried after the German long form
TRAILING_DATE_FORMATS = ("%d %B %Y",)  # 15 January 2024

GERMAN_MONTHS = {
    "januar": 1,
    "jänner": 1,
    "februar": 2,
    "märz": 3,
    "maerz": 3,
    "april": 4,
    "mai": 5,
    "juni": 6,
    "juli": 7,
    "august": 8,
    "september": 9,
    "oktober": 10,
    "november": 11,
    "dezember": 12,
}
GERMAN_LONG_DATE = re.compile(r"^(\d{1,2})\.\s*([A-Za-zÄÖÜäöü]+)\s+(\d{4})$")

PERIOD_SEPARATORS = (" - ", " to ", " bis ", "-")

TWO_PLACES = Decimal("0.01")


def _is_blank(raw: str | None) -> bool:
    return raw is None or not raw.strip()


def _parse_german_long_date(value: str) -> date | None:
    match = GERMAN_LONG_DATE.match(value)
    if not match:
        return None
    month = GERMAN_MONTHS.get(match.group(2).lower())
    if month is None:
        return None
    try:
        return date(int(match.group(3)), month, int(match.group(1)))
    except ValueError:
        return None


def parse_date(raw: str) -> date | None:
    """Parse a date in any of the supported input formats.

    Args:
        raw: Date string as produced by the oracle

    Returns:
        Parsed date, or None if no format matches
    """
    value = raw.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    german = _parse_german_long_date(value)
    if german is not None:
        return german

    for fmt in TRAILING_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def is_canonical_date(value: str | None) -> bool:
    """Check whether a value already is a ``dd.mm.yyyy`` date."""
    return value is not None and CANONICAL_DATE_PATTERN.match(value) is not None


def normalize_date(raw: str | None) -> str | None:
    """Convert a date string to ``dd.mm.yyyy``.

    Args:
        raw: Raw date string

    Returns:
        Canonical date, None for blank input, or the input unchanged when
        no known format matches
    """
    if _is_blank(raw):
        return None
    parsed = parse_date(raw)
    if parsed is None:
        return raw
    return parsed.strftime(CANONICAL_DATE_FORMAT)


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse an amount string into a Decimal.

    Everything except digits, ``.`` and ``,`` is dropped. Whichever of ``,``
    and ``.`` appears rightmost is the decimal separator, the other one is a
    thousands separator.

    >>> parse_amount("1.234,56 €")
    Decimal('1234.56')
    >>> parse_amount("$1,234.56")
    Decimal('1234.56')

    Returns:
        Parsed value, or None when nothing numeric remains
    """
    if raw is None:
        return None
    cleaned = re.sub(r"[^\d.,]", "", raw)

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma > last_dot:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif last_dot > last_comma:
        cleaned = cleaned.replace(",", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def detect_currency(raw: str) -> str:
    """Return the currency symbol for an amount string, defaulting to euro."""
    lowered = raw.lower()
    if "$" in raw or "usd" in lowered:
        return "$"
    return "€"


def format_amount(value: Decimal, currency: str = "€") -> str:
    """Format a value in canonical form, e.g. ``1.234,56€``."""
    with localcontext() as ctx:
        # quantize fails once the integer digits exceed the context precision
        ctx.prec = max(ctx.prec, value.adjusted() + 3)
        quantized = value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    grouped = f"{quantized:,.2f}"
    return grouped.translate(str.maketrans({",": ".", ".": ","})) + currency


def normalize_amount(raw: str | None) -> str | None:
    """Convert an amount string to canonical form.

    Args:
        raw: Raw amount, e.g. ``"$1,234.5"`` or ``"500,00 EUR"``

    Returns:
        Canonical amount, None for blank input, or the input unchanged when
        it does not parse
    """
    if _is_blank(raw):
        return None
    value = parse_amount(raw)
    if value is None:
        return raw
    return format_amount(value, detect_currency(raw))


def normalize_period(raw: str | None) -> str | None:
    """Convert a service period to ``start-end`` of canonical dates.

    Separators are tried in order; the first split whose two sides both
    normalize to canonical dates wins. Otherwise a period that is a single
    date is normalized like any date, and anything else is left unchanged.
    """
    if _is_blank(raw):
        return None
    for separator in PERIOD_SEPARATORS:
        if separator not in raw:
            continue
        start, end = raw.split(separator, 1)
        start_date = normalize_date(start.strip())
        end_date = normalize_date(end.strip())
        if is_canonical_date(start_date) and is_canonical_date(end_date):
            return f"{start_date}-{end_date}"

    single = normalize_date(raw)
    if is_canonical_date(single):
        return single
    return raw
