"""Ollama-based oracle gateway for self-hosted LLM inference.

Uses a local Ollama server for invoice field extraction.
Supports data sovereignty requirements by running entirely on-premises.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import logging

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from invoicebot.oracle.base import OracleGateway
from invoicebot.oracle.openai_gateway import SYSTEM_PROMPT
from invoicebot.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaGateway(OracleGateway):
    """Ollama-based gateway for self-hosted LLM inference.

    Uses local Ollama server running on localhost:11434.
    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Ollama gateway.

        Args:
            settings: Application settings
            client: Preconfigured HTTP client (built from settings if omitted)
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._client = client or httpx.Client(timeout=settings.oracle_timeout)

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_reachable(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            # Check if configured model is available
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ollama not reachable: {e}")
            return False

    def _complete(self, prompt: str) -> str:
        """Call Ollama API with retry logic for transient errors.

        Args:
            prompt: Instruction text for the LLM

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        retrying = Retrying(
            retry=retry_if_exception_type(httpx.TransportError),
            wait=wait_exponential_jitter(initial=1, max=30),
            stop=stop_after_attempt(self.settings.oracle_retry_attempts),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                response = self._client.post(
                    f"{self._base_url}/api/generate",
                    json={
                        "model": self._model,
                        "system": SYSTEM_PROMPT,
                        "prompt": prompt,
                        "stream": False,
                        "options": {
                            "temperature": self.settings.oracle_temperature,
                            "num_predict": self.settings.oracle_max_tokens,
                        },
                    },
                )
                response.raise_for_status()

        result: str = response.json().get("response", "")
        return result
