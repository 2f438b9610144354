"""Exception types raised by the extraction pipeline and oracle gateways.

Recoverable conditions (malformed validation/quality-check responses, a
gross amount that cannot be back-calculated) are not represented here:
they are logged where they happen and the pipeline carries on.
"""


class InvoiceBotError(Exception):
    """Base class for all invoicebot errors."""


class OracleFailure(InvoiceBotError):
    """The text-generation gateway could not produce a completion.

    Covers connection errors, timeouts and non-success responses.
    """


class DecodeError(InvoiceBotError):
    """The oracle response is not a valid JSON object."""


class PipelineError(InvoiceBotError):
    """Fatal failure of one pipeline invocation.

    Attributes:
        stage: Name of the stage that failed (e.g. 'extract', 'retry')
    """

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"Pipeline failed at stage {stage}: {cause}")
        self.stage = stage
