#!/usr/bin/env python3
"""
Tests for the LLM provider module.

This module tests:
- Provider configuration and client creation
- Prompt construction for single strings and batches
- Mapping of function-call responses back onto batches
- Translation of SDK errors into translator errors
"""

import json
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

import httpx
import openai

# Add parent directory to path for module import
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from translate_gpt.errors import (
    ApiError,
    ConfigurationError,
    RequestTimeoutError,
    ResponseParseError,
)
from translate_gpt.llm_provider import (
    TRANSLATE_PLURAL_TOOL,
    TRANSLATE_STRING_TOOL,
    TRANSLATE_STRINGS_TOOL,
    LLMClient,
    LLMConfig,
    LLMProvider,
    OpenAITranslationClient,
    TranslationOptions,
    build_system_message,
    build_user_prompt,
)
from translate_gpt.strings_codec import TranslationUnit

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def make_tool_response(arguments, name="translate_string"):
    """Build a chat completion response carrying one tool call."""
    tool_call = MagicMock()
    tool_call.function.name = name
    tool_call.function.arguments = (
        arguments if isinstance(arguments, str) else json.dumps(arguments)
    )
    message = MagicMock()
    message.tool_calls = [tool_call]
    message.content = None
    response = MagicMock()
    response.choices = [MagicMock(message=message)]
    return response


class TestLLMConfig(unittest.TestCase):
    """Tests for LLMConfig validation."""

    def test_provider_from_string(self):
        config = LLMConfig(provider="OpenRouter", api_key="key")
        self.assertEqual(config.provider, LLMProvider.OPENROUTER)

    def test_unknown_provider(self):
        with self.assertRaises(ConfigurationError):
            LLMConfig(provider="acme", api_key="key")

    def test_missing_api_key(self):
        with self.assertRaises(ConfigurationError):
            LLMConfig(provider=LLMProvider.OPENAI, api_key="")


class TestLLMClient(unittest.TestCase):
    """Tests for LLMClient request handling."""

    def setUp(self):
        self.client = LLMClient(LLMConfig(provider=LLMProvider.OPENAI, api_key="test-key"))
        self.create = MagicMock()
        self.client.client = MagicMock()
        self.client.client.chat.completions.create = self.create

    @patch("translate_gpt.llm_provider.OpenAI")
    def test_client_creation(self, mock_openai):
        """The SDK client gets the provider URL, timeout and retries."""
        LLMClient(
            LLMConfig(
                provider=LLMProvider.OPENROUTER, api_key="key", timeout=0, max_retries=3
            )
        )
        mock_openai.assert_called_once_with(
            api_key="key",
            base_url="https://openrouter.ai/api/v1",
            timeout=None,
            max_retries=3,
        )

    @patch("translate_gpt.llm_provider.OpenAI")
    def test_base_url_override(self, mock_openai):
        LLMClient(
            LLMConfig(
                provider=LLMProvider.OPENAI, api_key="key", base_url="http://localhost:8080/v1"
            )
        )
        self.assertEqual(
            mock_openai.call_args.kwargs["base_url"], "http://localhost:8080/v1"
        )

    def test_tool_call_arguments_are_returned(self):
        self.create.return_value = make_tool_response({"translation": "Bonjour"})

        result = self.client.chat_completion(
            messages=[{"role": "user", "content": "Hello"}],
            model="gpt-4o-mini",
            tools=[TRANSLATE_STRING_TOOL],
            temperature=0.5,
            timeout=10,
        )

        self.assertEqual(result, {"translation": "Bonjour"})
        kwargs = self.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["tool_choice"], "required")
        self.assertFalse(kwargs["parallel_tool_calls"])
        self.assertEqual(kwargs["temperature"], 0.5)
        self.assertEqual(kwargs["timeout"], 10)

    def test_plain_text_response(self):
        message = MagicMock(content="  Bonjour \n", tool_calls=None)
        self.create.return_value = MagicMock(choices=[MagicMock(message=message)])

        result = self.client.chat_completion(messages=[], model="gpt-4o-mini")

        self.assertEqual(result, "Bonjour")
        self.assertNotIn("tools", self.create.call_args.kwargs)

    def test_missing_tool_call(self):
        response = make_tool_response({})
        response.choices[0].message.tool_calls = []
        self.create.return_value = response

        with self.assertRaises(ResponseParseError):
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])

    def test_no_choices(self):
        self.create.return_value = MagicMock(choices=[])

        with self.assertRaises(ResponseParseError):
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])

    def test_invalid_json_arguments(self):
        self.create.return_value = make_tool_response("{not json")

        with self.assertRaises(ResponseParseError):
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])

    def test_timeout_error(self):
        self.create.side_effect = openai.APITimeoutError(request=REQUEST)

        with self.assertRaises(RequestTimeoutError) as context:
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])
        self.assertIsInstance(context.exception, TimeoutError)

    def test_status_error(self):
        """Non-success responses become ApiError with the status code."""
        response = httpx.Response(401, request=REQUEST, json={"error": {"message": "bad key"}})
        self.create.side_effect = openai.AuthenticationError(
            "Invalid API key", response=response, body=None
        )

        with self.assertRaises(ApiError) as context:
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])
        self.assertIn("401", str(context.exception))

    def test_connection_error(self):
        self.create.side_effect = openai.APIConnectionError(request=REQUEST)

        with self.assertRaises(ApiError):
            self.client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])

    def test_openrouter_headers(self):
        client = LLMClient(
            LLMConfig(
                provider=LLMProvider.OPENROUTER,
                api_key="key",
                site_url="https://example.com",
                site_name="Example",
            )
        )
        client.client = MagicMock()
        client.client.chat.completions.create.return_value = make_tool_response(
            {"translation": "Hola"}
        )

        client.chat_completion(messages=[], model="m", tools=[TRANSLATE_STRING_TOOL])

        self.assertEqual(
            client.client.chat.completions.create.call_args.kwargs["extra_headers"],
            {"HTTP-Referer": "https://example.com", "X-Title": "Example"},
        )


class TestPrompts(unittest.TestCase):
    """Tests for prompt construction."""

    def test_system_message_with_source_language(self):
        options = TranslationOptions(target_language="fr", model="m", source_language="en")
        message = build_system_message(options)

        self.assertIn("from English (en) into French (fr)", message)
        self.assertNotIn("Project context", message)

    def test_system_message_with_auto_source_and_context(self):
        options = TranslationOptions(
            target_language="de", model="m", context="A budgeting app"
        )
        message = build_system_message(options)

        self.assertIn("into German (de)", message)
        self.assertNotIn("from ", message)
        self.assertTrue(message.endswith("Project context: A budgeting app"))

    def test_single_string_prompt(self):
        options = TranslationOptions(target_language="fr", model="m")
        prompt = build_user_prompt(
            [TranslationUnit("greeting", "Hello", comment="Launch screen")], options
        )

        self.assertIn("Context: Launch screen", prompt)
        self.assertTrue(prompt.endswith("----------\nHello"))

    def test_batch_prompt(self):
        options = TranslationOptions(target_language="fr", model="m")
        prompt = build_user_prompt(
            [
                TranslationUnit("greeting", "Hello", comment="Launch screen"),
                TranslationUnit("farewell", "Bye"),
            ],
            options,
        )

        payload = json.loads(prompt.split("----------\n", 1)[1])
        self.assertEqual(
            payload,
            [
                {"key": "greeting", "text": "Hello", "comment": "Launch screen"},
                {"key": "farewell", "text": "Bye"},
            ],
        )
        self.assertNotIn("plural categories", prompt)

    def test_plural_prompt_lists_target_categories(self):
        options = TranslationOptions(target_language="pl", model="m", source_language="en")
        prompt = build_user_prompt(
            [TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"})],
            options,
        )

        self.assertIn("Android plural resource from English (en) into Polish (pl)", prompt)
        self.assertIn("uses: one, few, many, other.", prompt)
        payload = json.loads(prompt.split("----------\n", 1)[1])
        self.assertEqual(payload, {"one": "%d day", "other": "%d days"})

    def test_batch_prompt_with_plurals(self):
        options = TranslationOptions(target_language="pl", model="m")
        prompt = build_user_prompt(
            [
                TranslationUnit("title", "Calendar"),
                TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"}),
            ],
            options,
        )

        self.assertIn("uses: one, few, many, other.", prompt)
        payload = json.loads(prompt.split("----------\n", 1)[1])
        self.assertEqual(
            payload,
            [
                {"key": "title", "text": "Calendar"},
                {"key": "days", "plurals": {"one": "%d day", "other": "%d days"}},
            ],
        )


class TestOpenAITranslationClient(unittest.TestCase):
    """Tests for OpenAITranslationClient."""

    def setUp(self):
        self.llm_client = MagicMock(spec=LLMClient)
        self.client = OpenAITranslationClient(self.llm_client)
        self.options = TranslationOptions(
            target_language="fr", model="gpt-4o-mini", temperature=0.2, timeout=15
        )
        self.batch = [
            TranslationUnit("greeting", "Hello"),
            TranslationUnit("farewell", "Bye"),
            TranslationUnit("thanks", "Thank you"),
        ]

    def test_single_unit_uses_translate_string(self):
        self.llm_client.chat_completion.return_value = {"translation": "Bonjour"}

        result = self.client.translate(self.batch[:1], self.options)

        self.assertEqual(result, ["Bonjour"])
        kwargs = self.llm_client.chat_completion.call_args.kwargs
        self.assertEqual(kwargs["tools"], [TRANSLATE_STRING_TOOL])
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["temperature"], 0.2)
        self.assertEqual(kwargs["timeout"], 15)
        self.assertEqual(kwargs["messages"][0]["role"], "system")

    def test_batch_is_mapped_by_key(self):
        """Translations come back in batch order even if the model reorders them."""
        self.llm_client.chat_completion.return_value = {
            "translations": [
                {"key": "thanks", "translation": "Merci"},
                {"key": "greeting", "translation": "Bonjour"},
                {"key": "farewell", "translation": "Au revoir"},
            ]
        }

        result = self.client.translate(self.batch, self.options)

        self.assertEqual(result, ["Bonjour", "Au revoir", "Merci"])
        self.assertEqual(
            self.llm_client.chat_completion.call_args.kwargs["tools"],
            [TRANSLATE_STRINGS_TOOL],
        )

    def test_batch_count_mismatch(self):
        self.llm_client.chat_completion.return_value = {
            "translations": [
                {"key": "greeting", "translation": "Bonjour"},
                {"key": "farewell", "translation": "Au revoir"},
            ]
        }

        with self.assertRaises(ResponseParseError) as context:
            self.client.translate(self.batch, self.options)
        self.assertIn("thanks", str(context.exception))

    def test_batch_unknown_key(self):
        self.llm_client.chat_completion.return_value = {
            "translations": [
                {"key": "greeting", "translation": "Bonjour"},
                {"key": "farewell", "translation": "Au revoir"},
                {"key": "other", "translation": "Merci"},
            ]
        }

        with self.assertRaises(ResponseParseError):
            self.client.translate(self.batch, self.options)

    def test_malformed_single_response(self):
        self.llm_client.chat_completion.return_value = {"text": "Bonjour"}

        with self.assertRaises(ResponseParseError):
            self.client.translate(self.batch[:1], self.options)

    def test_single_plural_uses_translate_plural(self):
        """A plural group is translated in one call and every category is returned."""
        self.llm_client.chat_completion.return_value = {
            "one": "%d dzień",
            "few": "%d dni",
            "many": "%d dni",
            "other": "%d dnia",
            "zero": None,
            "two": None,
        }
        unit = TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"})
        options = TranslationOptions(target_language="pl", model="gpt-4o-mini")

        result = self.client.translate([unit], options)

        self.assertEqual(
            result,
            [{"one": "%d dzień", "few": "%d dni", "many": "%d dni", "other": "%d dnia"}],
        )
        self.assertEqual(
            self.llm_client.chat_completion.call_args.kwargs["tools"],
            [TRANSLATE_PLURAL_TOOL],
        )

    @patch("translate_gpt.llm_provider.logger")
    def test_plural_single_form_becomes_other(self, mock_logger):
        self.llm_client.chat_completion.return_value = {"one": "%d jour"}
        unit = TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"})

        result = self.client.translate([unit], self.options)

        self.assertEqual(result, [{"one": "%d jour", "other": "%d jour"}])
        mock_logger.warning.assert_called_once()

    def test_plural_without_other(self):
        self.llm_client.chat_completion.return_value = {"one": "%d dzień", "few": "%d dni"}
        unit = TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"})

        with self.assertRaises(ResponseParseError):
            self.client.translate([unit], self.options)

    def test_batch_with_plural_entry(self):
        self.llm_client.chat_completion.return_value = {
            "translations": [
                {"key": "title", "translation": "Kalendarz", "plurals": None},
                {
                    "key": "days",
                    "translation": "%d dnia",
                    "plurals": {
                        "zero": None,
                        "one": "%d dzień",
                        "two": None,
                        "few": "%d dni",
                        "many": "%d dni",
                        "other": "%d dnia",
                    },
                },
            ]
        }
        batch = [
            TranslationUnit("title", "Calendar"),
            TranslationUnit("days", "%d days", plurals={"one": "%d day", "other": "%d days"}),
        ]

        result = self.client.translate(batch, self.options)

        self.assertEqual(
            result,
            [
                "Kalendarz",
                {"one": "%d dzień", "few": "%d dni", "many": "%d dni", "other": "%d dnia"},
            ],
        )

    def test_batch_plural_entry_without_forms(self):
        self.llm_client.chat_completion.return_value = {
            "translations": [
                {"key": "title", "translation": "Kalendarz", "plurals": None},
                {"key": "days", "translation": "%d dnia", "plurals": None},
            ]
        }
        batch = [
            TranslationUnit("title", "Calendar"),
            TranslationUnit("days", "%d days", plurals={"other": "%d days"}),
        ]

        with self.assertRaises(ResponseParseError):
            self.client.translate(batch, self.options)

    def test_empty_batch(self):
        self.assertEqual(self.client.translate([], self.options), [])
        self.llm_client.chat_completion.assert_not_called()

    def test_api_errors_propagate(self):
        self.llm_client.chat_completion.side_effect = ApiError("status 500")

        with self.assertRaises(ApiError):
            self.client.translate(self.batch[:1], self.options)


if __name__ == "__main__":
    unittest.main()
