"""OpenAI-compatible oracle gateway.

Talks to any server implementing the OpenAI chat completions API, such as
LM Studio (default http://127.0.0.1:1234/v1) or vLLM. Uses the official
OpenAI client with a custom base URL.

Includes retry logic with exponential backoff for transient API errors.
"""

import logging

import openai
from openai import OpenAI
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from invoicebot.extraction.errors import OracleFailure
from invoicebot.oracle.base import OracleGateway
from invoicebot.shared.config import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a highly accurate JSON extractor for invoices. Output valid JSON only. "
    "The company name is the vendor who issued the invoice, never the recipient; "
    "extract it exactly as written. For amounts, extract the numerical value together "
    "with the currency symbol (e.g. '111,75 €' or '$98.34'). If the net amount is missing "
    "but the gross amount and the tax are present, calculate the net amount (gross - tax)."
)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAICompatibleGateway(OracleGateway):
    """Gateway for OpenAI-compatible chat completion servers."""

    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        """Initialize gateway.

        Args:
            settings: Application settings
            client: Preconfigured OpenAI client (built from settings if omitted)
        """
        super().__init__(settings)
        self._model = settings.oracle_model
        # Retries are handled by tenacity below
        self._client = client or OpenAI(
            base_url=settings.oracle_base_url,
            api_key=settings.oracle_api_key,
            timeout=settings.oracle_timeout,
            max_retries=0,
        )
        logger.info(f"OpenAI-compatible gateway: {settings.oracle_base_url} model={self._model}")

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai_compatible'
        """
        return "openai_compatible"

    def is_reachable(self) -> bool:
        """Check if the server answers the model listing endpoint.

        Returns:
            True if GET /models succeeds
        """
        try:
            self._client.models.list()
            return True
        except openai.OpenAIError as e:
            logger.debug(f"Oracle not reachable: {e}")
            return False

    def _complete(self, prompt: str) -> str:
        """Call the chat completions endpoint with retry on transient errors.

        Raises:
            OracleFailure: If the response carries no content
            openai.OpenAIError: After all retry attempts are exhausted
        """
        retrying = Retrying(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.oracle_retry_attempts),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                response = self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=self.settings.oracle_temperature,
                    max_tokens=self.settings.oracle_max_tokens,
                    stream=False,
                )

        if not response.choices or response.choices[0].message.content is None:
            raise OracleFailure("Oracle returned no completion content")
        content: str = response.choices[0].message.content
        logger.debug(f"Oracle answered with {len(content)} characters")
        return content
