"""Staged extraction pipeline.

Escalates through four oracle-backed stages until a record is trustworthy:

1. extract: standard extraction prompt. Done if the score reaches the trust threshold.
2. retry: detailed prompt. For German invoices with a gross but no net amount,
   the net amount is first back-calculated from the gross. The better of the
   two records is kept. Done if the score reaches the escalation threshold.
3. recalculate: the oracle sums the line items per tax rate. Its totals replace
   the current ones only when confident, different, and worth more than
   OVERRIDE_MARGIN points.
4. quality_check: only if the score is still below the escalation threshold.
   A confident verdict that the data is wrong rejects the record by zeroing
   its net amount.

Oracle failures and malformed stage 1/2 responses abort the run with a
PipelineError. Malformed stage 3/4 responses are absorbed by the decoder.
Records are never mutated; every change produces a new record.
"""

import logging
import time
from collections.abc import Callable

from invoicebot.extraction import metrics
from invoicebot.extraction.decoder import decode_invoice, decode_quality_check, decode_validation
from invoicebot.extraction.errors import DecodeError, PipelineError
from invoicebot.extraction.normalizer import detect_currency, format_amount
from invoicebot.extraction.prompts import (
    build_extraction_prompt,
    build_quality_check_prompt,
    build_recalculation_prompt,
    build_retry_prompt,
)
from invoicebot.extraction.schema import (
    InvoiceRecord,
    PipelineResult,
    QualityCheckResult,
    TrustScore,
    ValidationResult,
)
from invoicebot.extraction.scorer import score
from invoicebot.extraction.vat import derive_net_from_gross, has_gross_without_net, looks_german
from invoicebot.oracle.base import OracleGateway
from invoicebot.oracle.factory import create_gateway
from invoicebot.shared.config import Settings

logger = logging.getLogger(__name__)

STAGE_EXTRACT = "extract"
STAGE_RETRY = "retry"
STAGE_RECALCULATE = "recalculate"
STAGE_QUALITY_CHECK = "quality_check"

DEFAULT_TRUST_THRESHOLD = int(TrustScore.COMPLETE)
DEFAULT_ESCALATION_THRESHOLD = 50
OVERRIDE_MARGIN = 20

REJECTED_NET_AMOUNT = "0,00€"

Generate = Callable[[str], str]
Scorer = Callable[[InvoiceRecord], int]


class InvoicePipeline:
    """Drives the staged extraction of one document at a time.

    The pipeline holds no per-document state, so one instance can serve
    many documents, also from several threads.
    """

    def __init__(
        self,
        generate: Generate | OracleGateway,
        trust_threshold: int = DEFAULT_TRUST_THRESHOLD,
        escalation_threshold: int = DEFAULT_ESCALATION_THRESHOLD,
        scorer: Scorer = score,
    ) -> None:
        """Initialize pipeline.

        Args:
            generate: Oracle gateway, or any callable mapping a prompt to a completion
            trust_threshold: Score at which a record is accepted
            escalation_threshold: Score below which recalculation is attempted
            scorer: Trust scoring function
        """
        self._generate = generate
        self.trust_threshold = trust_threshold
        self.escalation_threshold = escalation_threshold
        self._score = scorer

    @classmethod
    def from_settings(
        cls, settings: Settings, gateway: OracleGateway | None = None
    ) -> "InvoicePipeline":
        """Build a pipeline from settings, creating the configured gateway if none is given."""
        return cls(
            gateway or create_gateway(settings),
            trust_threshold=settings.trust_threshold,
            escalation_threshold=settings.escalation_threshold,
        )

    def parse(self, text: str) -> InvoiceRecord:
        """Run the pipeline and return only the final record."""
        return self.run(text).record

    def run(self, text: str) -> PipelineResult:
        """Extract an invoice record from document text.

        Args:
            text: Plain-text rendering of one document

        Returns:
            PipelineResult with the final record and its trust score

        Raises:
            PipelineError: If an oracle call fails, or a stage 1/2 response
                cannot be decoded
        """
        start = time.time()
        try:
            result = self._run(text)
        except PipelineError as e:
            metrics.pipeline_runs_total.labels(outcome="failed").inc()
            logger.error(str(e))
            raise
        finally:
            metrics.pipeline_duration_seconds.observe(time.time() - start)

        metrics.pipeline_trust_score.observe(result.trust_score)
        metrics.pipeline_runs_total.labels(
            outcome="accepted" if result.accepted else "rejected"
        ).inc()
        return result

    def _run(self, text: str) -> PipelineResult:
        stages_run: list[str] = []

        # Stage 1: standard extraction
        logger.info("Stage 1: standard extraction")
        record = self._extract(STAGE_EXTRACT, build_extraction_prompt(text), stages_run)
        best_score = self._score(record)
        logger.info(f"Stage 1 trust score: {best_score}")
        if best_score >= self.trust_threshold:
            return self._result(record, best_score, stages_run)

        # Stage 2: back-calculation for German invoices, then detailed retry
        logger.info("Stage 2: retry with detailed prompt")
        if looks_german(text) and has_gross_without_net(record):
            derived = self._back_calculate(record)
            if derived is not None:
                record = derived
                best_score = self._score(record)
                logger.info(f"Trust score after net back-calculation: {best_score}")

        retry_record = self._extract(STAGE_RETRY, build_retry_prompt(text), stages_run)
        retry_score = self._score(retry_record)
        logger.info(f"Stage 2 trust score: {retry_score}")
        if retry_score > best_score:
            logger.info(f"Retry improved trust score: {best_score} -> {retry_score}")
            record, best_score = retry_record, retry_score
        else:
            logger.info("Retry brought no improvement")

        if best_score >= self.trust_threshold:
            return self._result(record, best_score, stages_run)
        if best_score >= self.escalation_threshold:
            logger.info(f"Trust score {best_score} is acceptable, skipping recalculation")
            return self._result(record, best_score, stages_run)

        # Stage 3: manual recalculation
        logger.info(f"Stage 3: recalculation (trust score {best_score})")
        validation = self._recalculate(text, record, stages_run)
        record, best_score = self._apply_validation(record, best_score, validation)

        if best_score >= self.escalation_threshold:
            return self._result(record, best_score, stages_run, validation=validation)

        # Stage 4: self-check
        logger.info("Stage 4: quality check")
        quality_check = self._quality_check(text, record, stages_run)
        if (
            not quality_check.all_correct
            and quality_check.has_high_confidence
            and quality_check.should_use_corrections
        ):
            for issue in quality_check.issues:
                logger.info(f"Quality issue: {issue}")
            logger.warning("Quality check rejected the extracted data")
            record = record.replace(net_amount=REJECTED_NET_AMOUNT)
            best_score = self._score(record)
        elif quality_check.all_correct:
            logger.info("Quality check confirmed the extracted data")
        else:
            logger.info(f"Quality check inconclusive (confidence: {quality_check.confidence})")

        return self._result(
            record, best_score, stages_run, validation=validation, quality_check=quality_check
        )

    def _ask(self, stage: str, prompt: str, stages_run: list[str]) -> str:
        """Send one prompt to the oracle, wrapping any failure as fatal."""
        stages_run.append(stage)
        metrics.pipeline_stage_invocations_total.labels(stage=stage).inc()
        try:
            return self._generate(prompt)
        except Exception as e:
            raise PipelineError(stage, e) from e

    def _extract(self, stage: str, prompt: str, stages_run: list[str]) -> InvoiceRecord:
        completion = self._ask(stage, prompt, stages_run)
        try:
            return decode_invoice(completion)
        except DecodeError as e:
            raise PipelineError(stage, e) from e

    def _back_calculate(self, record: InvoiceRecord) -> InvoiceRecord | None:
        """Derive the net amount from the gross amount of a German invoice."""
        derived = derive_net_from_gross(record.gross_amount)
        if derived is None:
            logger.warning(f"Net back-calculation skipped, unparsable gross {record.gross_amount!r}")
            return None
        net, _ = derived
        net_amount = format_amount(net, detect_currency(record.gross_amount))
        logger.info(f"Back-calculated net amount: {net_amount}")
        return record.replace(net_amount=net_amount)

    def _recalculate(
        self, text: str, record: InvoiceRecord, stages_run: list[str]
    ) -> ValidationResult:
        prompt = build_recalculation_prompt(text, record.net_amount, record.gross_amount)
        return decode_validation(self._ask(STAGE_RECALCULATE, prompt, stages_run))

    def _apply_validation(
        self, record: InvoiceRecord, current_score: int, validation: ValidationResult
    ) -> tuple[InvoiceRecord, int]:
        """Adopt recalculated amounts only when they clearly improve the score."""
        if validation.matches:
            logger.info("Recalculation confirms the extracted amounts")
            return record, current_score
        if not validation.has_high_confidence:
            logger.info(f"Recalculation not conclusive (confidence: {validation.confidence})")
            return record, current_score

        logger.info(
            f"Recalculation disagrees: net {record.net_amount} -> {validation.recalculated_net}, "
            f"gross {record.gross_amount} -> {validation.recalculated_gross}"
        )
        candidate = record.with_amounts(validation.recalculated_net, validation.recalculated_gross)
        candidate_score = self._score(candidate)
        if candidate_score > current_score + OVERRIDE_MARGIN:
            logger.info(f"Adopting recalculated amounts: {current_score} -> {candidate_score}")
            return candidate, candidate_score

        logger.info(f"Keeping original amounts (recalculated score {candidate_score})")
        return record, current_score

    def _quality_check(
        self, text: str, record: InvoiceRecord, stages_run: list[str]
    ) -> QualityCheckResult:
        prompt = build_quality_check_prompt(text, record)
        return decode_quality_check(self._ask(STAGE_QUALITY_CHECK, prompt, stages_run))

    def _result(
        self,
        record: InvoiceRecord,
        trust_score: int,
        stages_run: list[str],
        validation: ValidationResult | None = None,
        quality_check: QualityCheckResult | None = None,
    ) -> PipelineResult:
        logger.info(f"Pipeline finished after {stages_run[-1]} with trust score {trust_score}")
        return PipelineResult(
            record=record,
            trust_score=trust_score,
            final_stage=stages_run[-1],
            stages_run=tuple(stages_run),
            validation=validation,
            quality_check=quality_check,
            accept_threshold=self.trust_threshold,
        )
