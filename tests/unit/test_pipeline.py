"""Unit tests for the staged extraction pipeline.

Tests cover:
- Early exit at stage 1
- Retry comparison and the German net back-calculation in stage 2
- Mid-band short-circuit before recalculation
- Override guard for recalculated amounts in stage 3
- Rejection through the quality check in stage 4
- Fatal and soft failures
"""

import json
from typing import Any

import pytest

from invoicebot.extraction.errors import OracleFailure, PipelineError
from invoicebot.extraction.pipeline import (
    STAGE_EXTRACT,
    STAGE_QUALITY_CHECK,
    STAGE_RECALCULATE,
    STAGE_RETRY,
    InvoicePipeline,
)
from invoicebot.extraction.schema import InvoiceRecord
from invoicebot.shared.config import Settings


class ScriptedOracle:
    """Oracle stand-in answering prompts from a fixed script."""

    def __init__(self, *responses: str | Exception) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class ScriptedScorer:
    """Scorer stand-in returning fixed scores and remembering what it saw."""

    def __init__(self, *scores: int) -> None:
        self.scores = list(scores)
        self.records: list[InvoiceRecord] = []

    def __call__(self, record: InvoiceRecord) -> int:
        self.records.append(record)
        return self.scores.pop(0)


def invoice_json(**overrides: Any) -> str:
    """Build a stage 1/2 response; defaults reconcile at 19% VAT."""
    payload = {
        "company_name": "Future Corp",
        "invoice_number": "NEW-ERA-2025",
        "invoice_date": "01.01.2025",
        "net_amount": "100,00€",
        "gross_amount": "119,00€",
    }
    payload.update(overrides)
    return json.dumps(payload)


def validation_json(**overrides: Any) -> str:
    payload = {
        "recalculated_net": "100,00€",
        "recalculated_gross": "119,00€",
        "calculation_matches": False,
        "confidence": "high",
    }
    payload.update(overrides)
    return json.dumps(payload)


def quality_json(**overrides: Any) -> str:
    payload = {
        "all_correct": False,
        "issues_found": [{"field": "net_amount", "issue": "wrong", "should_be": "80,00€"}],
        "confidence": "high",
        "recommendation": "use_corrections",
    }
    payload.update(overrides)
    return json.dumps(payload)


# Scores 0 with the real scorer: net amount missing, text has no German markers
UNUSABLE = invoice_json(net_amount=None)
PLAIN_TEXT = "Invoice text without any tax markers"


class TestStageOne:
    """Stage 1 acceptance."""

    def test_high_trust_returns_immediately(self) -> None:
        """A record scoring at least 85 ends the run after one oracle call."""
        oracle = ScriptedOracle(invoice_json())
        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert len(oracle.prompts) == 1
        assert result.trust_score == 95
        assert result.stages_run == (STAGE_EXTRACT,)
        assert result.final_stage == STAGE_EXTRACT
        assert result.accepted is True
        assert result.record.invoice_number == "NEW-ERA-2025"

    def test_parse_returns_record(self) -> None:
        """parse() is run() reduced to the record."""
        record = InvoicePipeline(ScriptedOracle(invoice_json())).parse(PLAIN_TEXT)

        assert isinstance(record, InvoiceRecord)
        assert record.vendor_name == "Future Corp"


class TestStageTwo:
    """Stage 2 retry and comparison."""

    def test_retry_invoked_and_better_record_wins(self) -> None:
        """Stage 1 at 60 triggers a retry; a retry at 95 replaces the record."""
        oracle = ScriptedOracle(
            invoice_json(invoice_number="FIRST-1"), invoice_json(invoice_number="RETRY-2")
        )
        scorer = ScriptedScorer(60, 95)

        result = InvoicePipeline(oracle, scorer=scorer).run(PLAIN_TEXT)

        assert result.stages_run == (STAGE_EXTRACT, STAGE_RETRY)
        assert result.trust_score == 95
        assert result.record.invoice_number == "RETRY-2"
        assert [r.invoice_number for r in scorer.records] == ["FIRST-1", "RETRY-2"]

    def test_retry_not_better_keeps_first_record(self) -> None:
        """An equal retry score keeps the stage 1 record."""
        oracle = ScriptedOracle(
            invoice_json(invoice_number="FIRST-1"), invoice_json(invoice_number="RETRY-2")
        )

        result = InvoicePipeline(oracle, scorer=ScriptedScorer(60, 60)).run(PLAIN_TEXT)

        assert result.record.invoice_number == "FIRST-1"
        assert result.trust_score == 60

    def test_mid_band_skips_recalculation(self) -> None:
        """A best score of 60 after stage 2 ends the run without stage 3."""
        oracle = ScriptedOracle(invoice_json(), invoice_json())

        result = InvoicePipeline(oracle, scorer=ScriptedScorer(60, 40)).run(PLAIN_TEXT)

        assert len(oracle.prompts) == 2
        assert STAGE_RECALCULATE not in result.stages_run
        assert result.trust_score == 60
        assert result.accepted is False

    def test_german_net_back_calculation(self) -> None:
        """A German invoice with gross but no net gets net = gross / 1.19."""
        text = "Gesamtbetrag Brutto 119,00 EUR MwSt enthalten"
        oracle = ScriptedOracle(invoice_json(net_amount=None), "{}")

        result = InvoicePipeline(oracle).run(text)

        assert result.record.net_amount == "100,00€"
        assert result.record.gross_amount == "119,00€"
        assert result.trust_score == 95
        assert result.stages_run == (STAGE_EXTRACT, STAGE_RETRY)

    def test_back_calculation_uses_reduced_rate(self) -> None:
        """A gross amount that only divides cleanly by 1.07 uses 7%."""
        text = "Summe brutto 107,00 €"
        oracle = ScriptedOracle(invoice_json(net_amount=None, gross_amount="107,00€"), "{}")

        result = InvoicePipeline(oracle).run(text)

        assert result.record.net_amount == "100,00€"
        assert result.trust_score == 95

    @pytest.mark.parametrize("net", ["10,00€", "100,00€", "1.000,00€"])
    def test_real_net_survives_back_calculation_check(self, net: str) -> None:
        """A nonzero net ending in 0,00 is never replaced by gross / 1.19."""
        text = "Rechnung Gesamtbetrag Brutto 150,00 EUR"
        stage_one = invoice_json(company_name=None, net_amount=net, gross_amount="150,00€")
        oracle = ScriptedOracle(stage_one, stage_one, "{}", "{}")

        result = InvoicePipeline(oracle).run(text)

        assert result.record.net_amount == net
        assert f"Net Amount: {net}" in oracle.prompts[2]

    def test_no_back_calculation_without_german_markers(self) -> None:
        """Non-German text never gets a derived net amount."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, "{}", "{}")

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.record.net_amount is None

    def test_unparsable_gross_skips_back_calculation(self, caplog: pytest.LogCaptureFixture) -> None:
        """An unparsable gross amount is logged and the run continues."""
        text = "Brutto: siehe Anlage"
        oracle = ScriptedOracle(
            invoice_json(net_amount=None, gross_amount="siehe Anlage"), invoice_json()
        )

        result = InvoicePipeline(oracle).run(text)

        assert "Net back-calculation skipped" in caplog.text
        assert result.trust_score == 95
        assert result.stages_run == (STAGE_EXTRACT, STAGE_RETRY)


class TestStageThree:
    """Stage 3 recalculation and override guard."""

    def test_recalculated_amounts_adopted(self) -> None:
        """Confident, different, much better totals replace the amounts."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, validation_json())

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.stages_run == (STAGE_EXTRACT, STAGE_RETRY, STAGE_RECALCULATE)
        assert result.record.net_amount == "100,00€"
        assert result.record.gross_amount == "119,00€"
        assert result.record.vendor_name == "Future Corp"
        assert result.trust_score == 95
        assert result.validation is not None
        assert result.validation.has_high_confidence

    def test_recalculation_prompt_carries_current_amounts(self) -> None:
        """The stage 3 prompt shows the currently held amounts."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, validation_json())

        InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert "Net Amount: not found" in oracle.prompts[2]
        assert "Gross Amount: 119,00€" in oracle.prompts[2]

    def test_fifteen_point_gain_keeps_original(self) -> None:
        """An improvement of 15 points is not enough to override."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, validation_json(), "{}")
        scorer = ScriptedScorer(30, 30, 45)

        result = InvoicePipeline(oracle, scorer=scorer).run(PLAIN_TEXT)

        assert result.record.net_amount is None
        assert result.trust_score == 30
        assert scorer.records[2].net_amount == "100,00€"

    def test_twenty_point_gain_keeps_original(self) -> None:
        """Exactly 20 points is still not strictly more than 20."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, validation_json(), "{}")

        result = InvoicePipeline(oracle, scorer=ScriptedScorer(10, 10, 30)).run(PLAIN_TEXT)

        assert result.record.net_amount is None
        assert STAGE_QUALITY_CHECK in result.stages_run

    def test_twenty_one_point_gain_overrides(self) -> None:
        """21 points overrides, and a score of 50 or more skips stage 4."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, validation_json())

        result = InvoicePipeline(oracle, scorer=ScriptedScorer(30, 30, 51)).run(PLAIN_TEXT)

        assert result.record.net_amount == "100,00€"
        assert result.trust_score == 51
        assert STAGE_QUALITY_CHECK not in result.stages_run

    @pytest.mark.parametrize(
        "response",
        [
            validation_json(confidence="medium"),
            validation_json(calculation_matches=True),
        ],
    )
    def test_unconfident_or_matching_keeps_original(self, response: str) -> None:
        """Low confidence or agreement leaves the record untouched."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, response, "{}")

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.record.net_amount is None
        assert result.stages_run[-1] == STAGE_QUALITY_CHECK

    def test_malformed_validation_is_absorbed(self) -> None:
        """An unreadable stage 3 response does not abort the run."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, "not json", "also not json")

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.validation is not None
        assert result.validation.confidence == "error"
        assert result.quality_check is not None
        assert result.quality_check.confidence == "error"
        assert result.trust_score == 0


class TestStageFour:
    """Stage 4 quality check."""

    def test_confident_rejection_zeroes_net_amount(self) -> None:
        """A confident 'use corrections' verdict rejects the record."""
        stage_one = invoice_json(invoice_date="soon")  # implausible date scores 0
        oracle = ScriptedOracle(
            stage_one, stage_one, validation_json(confidence="low"), quality_json()
        )

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.record.net_amount == "0,00€"
        assert result.trust_score == 0
        assert result.accepted is False
        assert result.final_stage == STAGE_QUALITY_CHECK
        assert result.quality_check is not None
        assert result.quality_check.issues == ("net_amount: wrong (should be: 80,00€)",)
        assert "Net Amount: 100,00€" in oracle.prompts[3]

    @pytest.mark.parametrize(
        "response",
        [
            quality_json(recommendation="keep_extracted_data"),
            quality_json(confidence="medium"),
            quality_json(all_correct=True),
        ],
    )
    def test_other_verdicts_keep_record(self, response: str) -> None:
        """Anything short of a confident rejection keeps the record."""
        stage_one = invoice_json(invoice_date="soon")
        oracle = ScriptedOracle(stage_one, stage_one, "{}", response)

        result = InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert result.record.net_amount == "100,00€"
        assert result.stages_run == (
            STAGE_EXTRACT,
            STAGE_RETRY,
            STAGE_RECALCULATE,
            STAGE_QUALITY_CHECK,
        )


class TestFailures:
    """Fatal failures abort the run with a PipelineError."""

    def test_oracle_failure_in_stage_one(self) -> None:
        """An oracle failure is wrapped with the stage name and original cause."""
        cause = OracleFailure("LLM API down")
        oracle = ScriptedOracle(cause)

        with pytest.raises(PipelineError, match="Pipeline failed at stage extract") as exc_info:
            InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert exc_info.value.stage == STAGE_EXTRACT
        assert exc_info.value.__cause__ is cause

    def test_decode_failure_in_stage_two(self) -> None:
        """Malformed JSON in the retry response is fatal."""
        oracle = ScriptedOracle(UNUSABLE, "{broken")

        with pytest.raises(PipelineError) as exc_info:
            InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert exc_info.value.stage == STAGE_RETRY

    def test_oracle_failure_in_stage_three(self) -> None:
        """Oracle failures are fatal in the later stages too."""
        oracle = ScriptedOracle(UNUSABLE, UNUSABLE, TimeoutError("timed out"))

        with pytest.raises(PipelineError) as exc_info:
            InvoicePipeline(oracle).run(PLAIN_TEXT)

        assert exc_info.value.stage == STAGE_RECALCULATE
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    def test_failure_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Fatal failures are logged before propagating."""
        with pytest.raises(PipelineError):
            InvoicePipeline(ScriptedOracle(OracleFailure("down"))).run(PLAIN_TEXT)

        assert "Pipeline failed at stage extract: down" in caplog.text


def test_custom_thresholds() -> None:
    """Thresholds are configurable per pipeline."""
    oracle = ScriptedOracle(invoice_json(gross_amount=None))

    result = InvoicePipeline(oracle, trust_threshold=80).run(PLAIN_TEXT)

    assert result.trust_score == 85
    assert result.stages_run == (STAGE_EXTRACT,)


def test_from_settings_uses_given_gateway_and_thresholds() -> None:
    """from_settings wires thresholds from settings."""
    settings = Settings(_env_file=None, trust_threshold=90, escalation_threshold=40)
    oracle = ScriptedOracle(invoice_json(gross_amount=None), invoice_json(gross_amount=None))

    pipeline = InvoicePipeline.from_settings(settings, gateway=oracle)  # type: ignore[arg-type]
    result = pipeline.run(PLAIN_TEXT)

    assert pipeline.trust_threshold == 90
    assert pipeline.escalation_threshold == 40
    # 85 is below the trust threshold of 90 but above the escalation threshold
    assert result.stages_run == (STAGE_EXTRACT, STAGE_RETRY)
    assert result.accepted is False
