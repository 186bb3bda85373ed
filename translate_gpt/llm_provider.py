#!/usr/bin/env python3
"""
LLM Provider Module

This module sends translation batches to an OpenAI-compatible chat-completion
API (OpenAI or OpenRouter). One request is made per batch; the model answers
through a function call so the translations can be mapped back onto the
batch reliably.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from translate_gpt.errors import (
    ApiError,
    ConfigurationError,
    RequestTimeoutError,
    ResponseParseError,
)
from translate_gpt.language_utils import (
    PLURAL_CATEGORIES,
    describe_language,
    get_plural_categories,
    is_auto_language,
)
from translate_gpt.strings_codec import Translation, TranslationUnit

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# Tool/Function Calling Schemas for Structured Outputs
# ------------------------------------------------------------------------------

# Tool schema for translating a single string
TRANSLATE_STRING_TOOL = {
    "type": "function",
    "function": {
        "name": "translate_string",
        "description": "Return the translation of a single app UI string",
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "translation": {
                    "type": "string",
                    "description": "The translated text in the target language",
                }
            },
            "required": ["translation"],
            "additionalProperties": False,
        },
    },
}

# Tool schema for translating one Android plural resource
# Only the categories the target language uses are returned
TRANSLATE_PLURAL_TOOL = {
    "type": "function",
    "function": {
        "name": "translate_plural",
        "description": "Translate Android plural resources with all appropriate quantity forms for the target language",
        "parameters": {
            "type": "object",
            "properties": {
                "one": {
                    "type": "string",
                    "description": "Translation for singular quantity (e.g., '1 day')",
                },
                "other": {
                    "type": "string",
                    "description": "Translation for other quantities (e.g., '%d days') - this is the default fallback",
                },
                "zero": {
                    "type": "string",
                    "description": "Translation for zero quantity if the target language requires it",
                },
                "two": {
                    "type": "string",
                    "description": "Translation for dual quantity if the target language requires it",
                },
                "few": {
                    "type": "string",
                    "description": "Translation for few quantity if the target language requires it (e.g., Slavic languages)",
                },
                "many": {
                    "type": "string",
                    "description": "Translation for many quantity if the target language requires it (e.g., Slavic languages)",
                },
            },
            "required": [],
            "additionalProperties": False,
        },
    },
}

# Plural forms of a batch entry; null for plain strings and unused categories
_BATCH_PLURAL_FORMS = {
    "type": ["object", "null"],
    "description": "Quantity forms for entries given as plurals, otherwise null",
    "properties": {
        category: {"type": ["string", "null"]} for category in PLURAL_CATEGORIES
    },
    "required": list(PLURAL_CATEGORIES),
    "additionalProperties": False,
}

# Tool schema for translating several strings in one request
# Every input key must come back exactly once
TRANSLATE_STRINGS_TOOL = {
    "type": "function",
    "function": {
        "name": "translate_strings",
        "description": "Return the translations of a list of app UI strings, one per input key",
        "strict": True,
        "parameters": {
            "type": "object",
            "properties": {
                "translations": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "key": {
                                "type": "string",
                                "description": "The key of the input string, unchanged",
                            },
                            "translation": {
                                "type": "string",
                                "description": "The translated text in the target language",
                            },
                            "plurals": _BATCH_PLURAL_FORMS,
                        },
                        "required": ["key", "translation", "plurals"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["translations"],
            "additionalProperties": False,
        },
    },
}

SYSTEM_MESSAGE_TEMPLATE = """\
You are a professional translator localizing the user interface of a mobile application {direction}. \
Keep placeholders (e.g. %@, %d, %1$s, {{name}}), escape sequences (e.g. \\n, \\") and markup exactly as in the source. \
Use concise wording consistent with standard platform UI conventions and do not add explanations.\
"""

SINGLE_STRING_PROMPT = """\
Translate the following string {direction}.
{comment}----------
{text}"""

PLURAL_PROMPT = """\
Translate the following Android plural resource {direction}.
{categories} Keep placeholders such as %d in every form.
{comment}----------
{payload}"""

BATCH_PROMPT = """\
Translate the "text" of every entry in the following JSON array {direction}.
Return one translation per entry and keep each "key" unchanged. \
A "comment" explains where the string is used and must not be translated.
Entries with "plurals" instead of "text" are plural resources: return their \
quantity forms in "plurals" and the "other" form as "translation". \
{categories} Set "plurals" to null for every other entry.
----------
{payload}"""


class LLMProvider(Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    OPENROUTER = "openrouter"


@dataclass
class LLMConfig:
    """
    Configuration for LLM API access.

    Attributes:
        provider: The LLM provider to use (OpenAI or OpenRouter)
        api_key: API key for authentication
        base_url: Optional endpoint overriding the provider default
        timeout: Request timeout in seconds, 0 disables it
        max_retries: Retries performed by the SDK (exponential backoff)
        site_url: Optional site URL for OpenRouter rankings
        site_name: Optional site name for OpenRouter rankings
    """

    provider: LLMProvider
    api_key: str
    base_url: Optional[str] = None
    timeout: float = 30
    max_retries: int = 0
    site_url: Optional[str] = None
    site_name: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.provider, str):
            try:
                self.provider = LLMProvider(self.provider.lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unsupported provider '{self.provider}', "
                    f"choose one of: {', '.join(p.value for p in LLMProvider)}"
                )

        if not self.api_key:
            raise ConfigurationError("API key is required")


@dataclass
class TranslationOptions:
    """Per-run request settings shared by every batch."""

    target_language: str
    model: str
    source_language: str = "auto"
    context: Optional[str] = None
    temperature: float = 0.5
    timeout: float = 30


class LLMClient:
    """
    Client for interacting with LLM APIs.

    Supports both OpenAI and OpenRouter with a unified interface.
    Uses the OpenAI Python SDK as both providers are API-compatible.
    """

    # Provider-specific base URLs
    BASE_URLS = {
        LLMProvider.OPENAI: "https://api.openai.com/v1",
        LLMProvider.OPENROUTER: "https://openrouter.ai/api/v1",
    }

    def __init__(self, config: LLMConfig):
        self.config = config
        self.client = self._create_client()

        logger.info(f"Initialized LLM client with provider={config.provider.value}")

    def _create_client(self) -> OpenAI:
        base_url = self.config.base_url or self.BASE_URLS[self.config.provider]

        logger.debug(f"Creating OpenAI client with base_url={base_url}")

        return OpenAI(
            api_key=self.config.api_key,
            base_url=base_url,
            timeout=self.config.timeout or None,
            max_retries=self.config.max_retries,
        )

    def _get_extra_headers(self) -> Dict[str, str]:
        """Return the OpenRouter attribution headers, if configured."""
        headers = {}
        if self.config.provider == LLMProvider.OPENROUTER:
            if self.config.site_url:
                headers["HTTP-Referer"] = self.config.site_url
            if self.config.site_name:
                headers["X-Title"] = self.config.site_name
        return headers

    def chat_completion(
        self,
        messages: list,
        model: str,
        tools: Optional[list] = None,
        tool_choice: str = "required",
        temperature: float = 0,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a chat completion request to the LLM API with optional function calling.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model identifier
            tools: Optional list of tool definitions for function calling
            tool_choice: Controls which tool is called: "auto", "required", or "none"
            temperature: Sampling temperature between 0 and 2
            timeout: Request timeout in seconds, overriding the client default

        Returns:
            If tools are provided: Dict containing the function arguments
            If no tools: String containing the generated text response

        Raises:
            RequestTimeoutError: If the request timed out
            ApiError: For any other API failure (authentication, rate limits, etc.)
            ResponseParseError: If the response has no usable content
        """
        api_params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }

        if tools:
            api_params["tools"] = tools
            api_params["tool_choice"] = tool_choice
            # Structured outputs require parallel_tool_calls: false
            api_params["parallel_tool_calls"] = False

        extra_headers = self._get_extra_headers()
        if extra_headers:
            api_params["extra_headers"] = extra_headers

        if timeout:
            api_params["timeout"] = timeout

        logger.debug(
            f"Sending chat completion request to {self.config.provider.value} "
            f"(model: {model}, temperature: {temperature}, "
            f"tools: {'yes' if tools else 'no'})"
        )

        try:
            response = self.client.chat.completions.create(**api_params)
        except openai.APITimeoutError as e:
            logger.error(f"Request to {self.config.provider.value} timed out: {e}")
            raise RequestTimeoutError(
                f"Request to {self.config.provider.value} timed out after {timeout or self.config.timeout}s"
            ) from e
        except openai.APIStatusError as e:
            logger.error(f"Error calling {self.config.provider.value} API: {e}")
            raise ApiError(
                f"{self.config.provider.value} API returned status {e.status_code}: {e.message}"
            ) from e
        except openai.APIError as e:
            logger.error(f"Error calling {self.config.provider.value} API: {e}")
            raise ApiError(f"{self.config.provider.value} API request failed: {e}") from e

        if not response.choices:
            raise ResponseParseError("API response contained no choices")
        message = response.choices[0].message

        if not tools:
            generated_text = (message.content or "").strip()
            logger.debug(f"Received response: {generated_text[:100]}...")
            return generated_text

        if not message.tool_calls:
            raise ResponseParseError(
                "Model did not return any tool calls despite tool_choice='required'"
            )

        tool_call = message.tool_calls[0]
        arguments_str = tool_call.function.arguments
        logger.debug(f"Raw function arguments string: {arguments_str}")

        try:
            arguments = json.loads(arguments_str)
        except (TypeError, json.JSONDecodeError) as e:
            raise ResponseParseError(
                f"Function arguments of '{tool_call.function.name}' are not valid JSON: {e}"
            ) from e

        if not isinstance(arguments, dict):
            raise ResponseParseError(
                f"Function arguments of '{tool_call.function.name}' are not an object"
            )
        return arguments


# ------------------------------------------------------------------------------
# Translation clients
# ------------------------------------------------------------------------------


class TranslationClient(ABC):
    """Translates one batch of units per call."""

    @abstractmethod
    def translate(
        self, batch: List[TranslationUnit], options: TranslationOptions
    ) -> List[Translation]:
        """
        Translate the batch and return one translation per unit, in batch order.
        Plural units get a dict of quantity forms, other units a string.

        Raises:
            ApiError, RequestTimeoutError, ResponseParseError
        """


def _direction(options: TranslationOptions) -> str:
    target = describe_language(options.target_language)
    if is_auto_language(options.source_language):
        return f"into {target}"
    return f"from {describe_language(options.source_language)} into {target}"


def _plural_instruction(options: TranslationOptions) -> str:
    categories = get_plural_categories(options.target_language)
    if not categories:
        return "Return every plural category the target language needs."
    return (
        f"Return exactly the plural categories {describe_language(options.target_language)} "
        f"uses: {', '.join(categories)}."
    )


def build_system_message(options: TranslationOptions) -> str:
    """Return the system message with languages and the optional common context."""
    system_message = SYSTEM_MESSAGE_TEMPLATE.format(direction=_direction(options))
    if options.context:
        system_message += f"\nProject context: {options.context}"
    return system_message


def build_user_prompt(batch: List[TranslationUnit], options: TranslationOptions) -> str:
    """Return the user message carrying the source texts of a batch."""
    if len(batch) == 1:
        unit = batch[0]
        comment = f"Context: {unit.comment}\n" if unit.comment else ""
        if unit.is_plural:
            return PLURAL_PROMPT.format(
                direction=_direction(options),
                categories=_plural_instruction(options),
                comment=comment,
                payload=json.dumps(unit.plurals, ensure_ascii=False, indent=2),
            )
        return SINGLE_STRING_PROMPT.format(
            direction=_direction(options), comment=comment, text=unit.source_text
        )

    entries = []
    for unit in batch:
        entry = {"key": unit.key}
        if unit.is_plural:
            entry["plurals"] = unit.plurals
        else:
            entry["text"] = unit.source_text
        if unit.comment:
            entry["comment"] = unit.comment
        entries.append(entry)

    has_plurals = any(unit.is_plural for unit in batch)
    return BATCH_PROMPT.format(
        direction=_direction(options),
        categories=_plural_instruction(options) if has_plurals else "",
        payload=json.dumps(entries, ensure_ascii=False, indent=2),
    )


def _plural_forms(result: Any, key: str) -> Dict[str, str]:
    """
    Extract the quantity forms of a plural translation.

    Unused categories may be null. "other" is mandatory in Android; when the
    model returns a single form without it, that form is used as "other".
    """
    if not isinstance(result, dict):
        raise ResponseParseError(f"Plural translation of '{key}' is not an object")

    forms = {
        quantity: text
        for quantity, text in result.items()
        if quantity in PLURAL_CATEGORIES and isinstance(text, str) and text
    }
    if not forms:
        raise ResponseParseError(f"No plural forms returned for '{key}'")

    if "other" not in forms:
        if len(forms) != 1:
            raise ResponseParseError(
                f"Plural translation of '{key}' has no 'other' form: {sorted(forms)}"
            )
        only = next(iter(forms))
        logger.warning(f"Using the '{only}' form of '{key}' as 'other' fallback")
        forms["other"] = forms[only]
    return forms


def _translations_in_batch_order(
    batch: List[TranslationUnit], result: Dict[str, Any]
) -> List[Translation]:
    """Map the translate_strings result back onto the batch order."""
    items = result.get("translations")
    if not isinstance(items, list):
        raise ResponseParseError("Response has no 'translations' list")

    by_key: Dict[str, Dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("translation"), str):
            raise ResponseParseError(f"Malformed translation entry: {item!r}")
        by_key[item.get("key")] = item

    expected = [unit.key for unit in batch]
    if len(items) != len(batch) or set(by_key) != set(expected):
        missing = [key for key in expected if key not in by_key]
        raise ResponseParseError(
            f"Expected {len(batch)} translations, got {len(items)} "
            f"(missing keys: {', '.join(missing) or 'none'})"
        )

    translations: List[Translation] = []
    for unit in batch:
        item = by_key[unit.key]
        if unit.is_plural:
            translations.append(_plural_forms(item.get("plurals"), unit.key))
        else:
            translations.append(item["translation"])
    return translations


class OpenAITranslationClient(TranslationClient):
    """Translation client that uses chat models through LLMClient."""

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    def translate(
        self, batch: List[TranslationUnit], options: TranslationOptions
    ) -> List[Translation]:
        if not batch:
            return []

        messages = [
            {"role": "system", "content": build_system_message(options)},
            {"role": "user", "content": build_user_prompt(batch, options)},
        ]
        if len(batch) > 1:
            tool = TRANSLATE_STRINGS_TOOL
        elif batch[0].is_plural:
            tool = TRANSLATE_PLURAL_TOOL
        else:
            tool = TRANSLATE_STRING_TOOL

        result = self.llm_client.chat_completion(
            messages=messages,
            model=options.model,
            tools=[tool],
            tool_choice="required",
            temperature=options.temperature,
            timeout=options.timeout,
        )

        if len(batch) > 1:
            return _translations_in_batch_order(batch, result)

        if batch[0].is_plural:
            forms = _plural_forms(result, batch[0].key)
            logger.debug(f"Received plural forms for '{batch[0].key}': {sorted(forms)}")
            return [forms]

        translation = result.get("translation")
        if not isinstance(translation, str):
            raise ResponseParseError("Response has no 'translation' string")
        return [translation]
