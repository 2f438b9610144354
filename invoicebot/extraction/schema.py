"""Invoice data models for staged extraction.

Amounts and dates are kept in their canonical textual form
(``1.234,56€`` and ``dd.mm.yyyy``) because that is the interchange format
with the oracle and with downstream spreadsheet export. Arithmetic happens
on parsed values inside the normalizer, VAT helpers and scorer.

All models are frozen: a stage that changes a record builds a new one.
"""

from enum import IntEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Confidence = Literal["high", "medium", "low", "error"]
Recommendation = Literal["keep_extracted_data", "use_corrections"]


class TrustScore(IntEnum):
    """The three trust tiers a record can reach."""

    REJECTED = 0
    COMPLETE = 85
    VAT_VERIFIED = 95


def describe_score(score: int) -> str:
    """Human-readable description of a trust score."""
    if score >= TrustScore.VAT_VERIFIED:
        return "Perfect - validated against VAT rate"
    if score >= TrustScore.COMPLETE:
        return "Very good - all required fields present"
    return "Incomplete - required fields missing"


class InvoiceRecord(BaseModel):
    """Canonical extraction result for one document.

    Dates are ``dd.mm.yyyy`` (service period may be ``start-end``), amounts
    carry exactly one currency symbol suffix. Unset fields are None.
    """

    model_config = ConfigDict(frozen=True)

    vendor_name: str | None = Field(None, description="Billing party (not the recipient)")
    invoice_number: str | None = Field(None, description="Invoice identifier")
    invoice_date: str | None = Field(None, description="Issue date, dd.mm.yyyy")
    net_amount: str | None = Field(None, description="Amount before tax, e.g. 100,00€")
    gross_amount: str | None = Field(None, description="Amount after tax, e.g. 119,00€")
    service_period: str | None = Field(None, description="Single date or start-end")

    def replace(self, **changes: str | None) -> "InvoiceRecord":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)

    def with_amounts(self, net_amount: str | None, gross_amount: str | None) -> "InvoiceRecord":
        """Return a copy carrying new net and gross amounts."""
        return self.replace(net_amount=net_amount, gross_amount=gross_amount)

    def is_incomplete(self) -> bool:
        """True when vendor, invoice number or gross amount is missing."""
        return self.vendor_name is None or self.invoice_number is None or self.gross_amount is None

    def is_complete(self) -> bool:
        """True when every field is populated."""
        return all(value is not None for value in self.model_dump().values())


class LineItem(BaseModel):
    """One invoice position as reported by the recalculation stage."""

    model_config = ConfigDict(frozen=True)

    net: str | None = None
    tax_rate: str | None = None
    gross_calculated: str | None = None


class ValidationResult(BaseModel):
    """Outcome of the manual recalculation stage.

    Attributes:
        recalculated_net: Sum of position nets (canonical amount) or None
        recalculated_gross: Sum of position grosses (canonical amount) or None
        matches: Whether the recalculated totals agree with the extracted ones
        confidence: high/medium/low, or error when the response was unreadable
        has_mixed_tax_rates: Whether positions carry different tax rates
        positions: Line items the oracle summed up
    """

    model_config = ConfigDict(frozen=True)

    recalculated_net: str | None = None
    recalculated_gross: str | None = None
    matches: bool = False
    confidence: Confidence = "low"
    has_mixed_tax_rates: bool = False
    positions: tuple[LineItem, ...] = ()

    @property
    def has_high_confidence(self) -> bool:
        return self.confidence == "high"


class QualityCheckResult(BaseModel):
    """Outcome of the self-check stage."""

    model_config = ConfigDict(frozen=True)

    all_correct: bool = False
    confidence: Confidence = "low"
    recommendation: Recommendation = "keep_extracted_data"
    issues: tuple[str, ...] = ()

    @property
    def has_high_confidence(self) -> bool:
        return self.confidence == "high"

    @property
    def should_use_corrections(self) -> bool:
        return self.recommendation == "use_corrections"


class PipelineResult(BaseModel):
    """What one pipeline invocation hands back to its caller.

    Attributes:
        record: Final record
        trust_score: Trust score of the final record
        final_stage: Name of the last stage that ran
        stages_run: Names of all stages that called the oracle, in order
        validation: Recalculation outcome, if that stage ran
        quality_check: Self-check outcome, if that stage ran
    """

    model_config = ConfigDict(frozen=True)

    record: InvoiceRecord
    trust_score: int
    final_stage: str
    stages_run: tuple[str, ...] = ()
    validation: ValidationResult | None = None
    quality_check: QualityCheckResult | None = None
    accept_threshold: int = TrustScore.COMPLETE

    @property
    def accepted(self) -> bool:
        """Whether downstream export should take this record."""
        return self.trust_score >= self.accept_threshold
