"""Factory for creating oracle gateways based on configuration.

Implements Factory Pattern for gateway selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from invoicebot.oracle.base import OracleGateway
from invoicebot.oracle.ollama_gateway import OllamaGateway
from invoicebot.oracle.openai_gateway import OpenAICompatibleGateway
from invoicebot.shared.config import Settings

logger = logging.getLogger(__name__)


class GatewayRegistry:
    """Registry of available oracle gateways.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new gateways.
    """

    _gateways: dict[str, type[OracleGateway]] = {
        "openai_compatible": OpenAICompatibleGateway,
        "ollama": OllamaGateway,
    }

    @classmethod
    def register(cls, name: str, gateway_class: type[OracleGateway]) -> None:
        """Register a new gateway.

        Args:
            name: Provider identifier
            gateway_class: Class implementing OracleGateway
        """
        cls._gateways[name] = gateway_class
        logger.info(f"Registered oracle gateway: {name}")

    @classmethod
    def get_gateway_class(cls, name: str) -> type[OracleGateway]:
        """Get gateway class by name.

        Raises:
            ValueError: If gateway not found in registry
        """
        if name not in cls._gateways:
            available = ", ".join(cls._gateways.keys())
            raise ValueError(
                f"Unknown oracle provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._gateways[name]

    @classmethod
    def list_gateways(cls) -> list[str]:
        """List all registered gateway names."""
        return list(cls._gateways.keys())


def create_gateway(settings: Settings) -> OracleGateway:
    """Create the oracle gateway selected by settings.oracle_provider.

    Reachability is not probed here; call ``is_reachable()`` explicitly.

    Args:
        settings: Application settings

    Returns:
        Configured gateway instance

    Raises:
        ValueError: If configured provider is unknown

    Example:
        >>> gateway = create_gateway(Settings(oracle_provider="ollama"))
        >>> gateway.generate("Extract invoice data ...")
    """
    provider_name = settings.oracle_provider
    gateway_class = GatewayRegistry.get_gateway_class(provider_name)
    gateway = gateway_class(settings)
    logger.info(f"Created oracle gateway: {provider_name}")
    return gateway
