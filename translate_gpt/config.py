#!/usr/bin/env python3
"""
Run Configuration

This module defines the configuration consumed by the translation pipeline.
Values come from command-line flags or from the GPT_* environment variables,
are converted once, and validated when the dataclass is created so that the
rest of the code can rely on typed fields.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from translate_gpt.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "gpt-3.5-turbo"
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_TEMPERATURE = 0.5
DEFAULT_SOURCE_LANGUAGE = "auto"
DEFAULT_TARGET_LANGUAGE = "en"
DEFAULT_PROVIDER = "openai"

# Environment variable names for each configuration field
ENV_VARS: Dict[str, str] = {
    "api_token": "GPT_API_KEY",
    "model_name": "GPT_MODEL_NAME",
    "request_timeout": "GPT_REQUEST_TIMEOUT",
    "temperature": "GPT_TEMPERATURE",
    "skip_translated": "GPT_SKIP_TRANSLATED",
    "source_language": "GPT_SOURCE_LANGUAGE",
    "target_language": "GPT_TARGET_LANGUAGE",
    "source_file": "GPT_SOURCE_FILE",
    "target_file": "GPT_TARGET_FILE",
    "context": "GPT_COMMON_CONTEXT",
    "bunch_size": "GPT_BUNCH_SIZE",
    "provider": "GPT_PROVIDER",
    "base_url": "GPT_BASE_URL",
    "max_retries": "GPT_MAX_RETRIES",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(value: str, name: str) -> bool:
    """Convert an environment-style boolean string."""
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{value}'")


def parse_int(value: str, name: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")


def parse_float(value: str, name: str) -> float:
    try:
        return float(value.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{value}'")


@dataclass
class TranslateConfig:
    """
    Configuration for one translation run.

    Attributes:
        source_file: Strings file to translate (must exist)
        target_file: Strings file to update or create
        api_token: API key for the chat-completion provider
        model_name: Model identifier (e.g., "gpt-4o-mini")
        request_timeout: Per-request timeout in seconds
        temperature: Sampling temperature between 0 and 2
        skip_translated: Leave entries that already have a translation untouched
        source_language: Language to translate from, "auto" lets the model detect it
        target_language: Language to translate to
        context: Optional common context added to every request
        bunch_size: Strings per request; None or < 1 sends one string per request
        provider: "openai" or "openrouter"
        base_url: Optional override of the provider endpoint
        max_retries: Retries per request performed by the SDK with exponential backoff
    """

    source_file: str
    target_file: str
    api_token: str = ""
    model_name: str = DEFAULT_MODEL_NAME
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    temperature: float = DEFAULT_TEMPERATURE
    skip_translated: bool = True
    source_language: str = DEFAULT_SOURCE_LANGUAGE
    target_language: str = DEFAULT_TARGET_LANGUAGE
    context: Optional[str] = None
    bunch_size: Optional[int] = None
    provider: str = DEFAULT_PROVIDER
    base_url: Optional[str] = None
    max_retries: int = 0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.source_file:
            raise ConfigurationError("Source file is required")
        if not os.path.isfile(self.source_file):
            raise ConfigurationError(f"Invalid file path: {self.source_file}")

        if not self.target_file:
            raise ConfigurationError("Target file is required")

        if not self.model_name:
            raise ConfigurationError("Model name is required")

        if self.request_timeout < 0:
            raise ConfigurationError(
                f"Request timeout must be >= 0, got {self.request_timeout}"
            )

        if not 0 <= self.temperature <= 2:
            raise ConfigurationError(
                f"Temperature must be between 0 and 2, got {self.temperature}"
            )

        if self.max_retries < 0:
            raise ConfigurationError(
                f"Max retries must be >= 0, got {self.max_retries}"
            )

        if not self.target_language:
            raise ConfigurationError("Target language is required")

        self.source_language = self.source_language or DEFAULT_SOURCE_LANGUAGE
        self.provider = self.provider.lower()
        if not self.context:
            self.context = None

    @property
    def batched(self) -> bool:
        """True when several strings are sent in one request."""
        return self.bunch_size is not None and self.bunch_size >= 1


def env_defaults(environ: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    """
    Read configuration values from GPT_* environment variables.

    Only variables that are set (and non-empty) are returned, converted to the
    field's type, so the result can be used as keyword overrides.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Dictionary of field name -> converted value
    """
    if environ is None:
        environ = os.environ

    values: Dict[str, object] = {}
    for field_name, env_name in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue

        if field_name in ("request_timeout", "bunch_size", "max_retries"):
            values[field_name] = parse_int(raw, env_name)
        elif field_name == "temperature":
            values[field_name] = parse_float(raw, env_name)
        elif field_name == "skip_translated":
            values[field_name] = parse_bool(raw, env_name)
        else:
            values[field_name] = raw

    logger.debug(
        f"Loaded {len(values)} settings from environment: "
        f"{sorted(k for k in values if k != 'api_token')}"
    )
    return values
