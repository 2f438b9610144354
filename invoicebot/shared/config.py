"""Shared configuration management for the invoice pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'INVOICEBOT_'.
    Example: INVOICEBOT_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="INVOICEBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service identification (startup log line)
    service_name: str = Field(
        default="invoicebot",
        description="Service identifier for logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Oracle (text generation) configuration
    oracle_provider: Literal["openai_compatible", "ollama"] = Field(
        default="openai_compatible",
        description=(
            "Oracle gateway: openai_compatible (LM Studio or any /v1/chat/completions server), "
            "ollama (self-hosted Ollama server)"
        ),
    )
    oracle_base_url: str = Field(
        default="http://127.0.0.1:1234/v1",
        description="Base URL of the OpenAI-compatible server",
    )
    oracle_model: str = Field(
        default="meta-llama-3.1-8b-instruct",
        description="Model served by the OpenAI-compatible server",
    )
    oracle_api_key: str = Field(
        default="lm-studio",
        description="API key for the OpenAI-compatible server (local servers accept any value)",
    )
    oracle_temperature: float = Field(
        default=0.1,
        ge=0,
        le=2,
        description="Sampling temperature for oracle requests",
    )
    oracle_max_tokens: int = Field(
        default=800,
        gt=0,
        description="Maximum completion tokens per oracle request",
    )
    oracle_timeout: float = Field(
        default=150.0,
        gt=0,
        description="Request timeout in seconds, enforced by the gateway",
    )
    oracle_retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Transport-level attempts per oracle request before failing",
    )

    # Ollama configuration (for oracle_provider="ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="llama3.1:8b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )

    # Pipeline policy
    trust_threshold: int = Field(
        default=85,
        description="Trust score at or above which a record is accepted",
    )
    escalation_threshold: int = Field(
        default=50,
        description="Trust score below which the pipeline escalates to recalculation",
    )

    # Batch processing
    batch_max_workers: int = Field(
        default=1,
        ge=1,
        description="Concurrent documents in a batch run (1 = sequential)",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
