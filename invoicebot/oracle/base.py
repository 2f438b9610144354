"""Abstract base class for oracle gateways.

The pipeline only needs ``generate(prompt) -> text``. Gateways own
everything else: transport, authentication, retries, timeouts and the
removal of Markdown code fences around JSON answers.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import re
import time
from abc import ABC, abstractmethod

from invoicebot.extraction import metrics
from invoicebot.extraction.errors import OracleFailure
from invoicebot.shared.config import Settings

CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def strip_code_fences(completion: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence.

    >>> strip_code_fences('```json\\n{"a": 1}\\n```')
    '{"a": 1}'
    """
    return CODE_FENCE.sub("", completion.strip()).strip()


class OracleGateway(ABC):
    """Abstract base class for text-generation gateways.

    Example implementations:
    - OpenAICompatibleGateway: LM Studio or any /v1/chat/completions server
    - OllamaGateway: self-hosted Ollama server
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize gateway with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    def generate(self, prompt: str) -> str:
        """Send a prompt to the oracle and return the cleaned completion.

        Args:
            prompt: Instruction text

        Returns:
            Completion text with code fences removed

        Raises:
            OracleFailure: On transport errors, timeouts or non-success responses
        """
        start = time.time()
        try:
            completion = self._complete(prompt)
        except OracleFailure:
            metrics.oracle_requests_total.labels(
                provider=self.provider_name, status="failed"
            ).inc()
            raise
        except Exception as e:
            metrics.oracle_requests_total.labels(
                provider=self.provider_name, status="failed"
            ).inc()
            raise OracleFailure(f"{self.provider_name} request failed: {e}") from e
        finally:
            metrics.oracle_request_duration_seconds.labels(provider=self.provider_name).observe(
                time.time() - start
            )

        metrics.oracle_requests_total.labels(provider=self.provider_name, status="success").inc()
        return strip_code_fences(completion)

    __call__ = generate

    @abstractmethod
    def _complete(self, prompt: str) -> str:
        """Perform the raw request and return the completion text."""
        pass

    @abstractmethod
    def is_reachable(self) -> bool:
        """Check whether the oracle server answers and serves the configured model.

        Returns:
            True if the gateway can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get gateway name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai_compatible', 'ollama')
        """
        pass
