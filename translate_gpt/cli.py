#!/usr/bin/env python3
"""
Command-line entry point.

Every option falls back to its GPT_* environment variable, so the tool can be
driven entirely from a CI environment:

    GPT_API_KEY=... translate-gpt --source-file en.lproj/Localizable.strings \
        --target-file fr.lproj/Localizable.strings --target-language fr
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from translate_gpt.config import (
    DEFAULT_MODEL_NAME,
    DEFAULT_PROVIDER,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SOURCE_LANGUAGE,
    DEFAULT_TARGET_LANGUAGE,
    DEFAULT_TEMPERATURE,
    TranslateConfig,
    env_defaults,
)
from translate_gpt.errors import ConfigurationError, TranslatorError
from translate_gpt.llm_provider import LLMProvider
from translate_gpt.pipeline import TranslationPipeline, create_translation_report
from translate_gpt.strings_codec import AVAILABLE_EXTENSIONS

logger = logging.getLogger(__name__)

# Use a unique delimiter to prevent collision if translations contain "EOF"
GITHUB_OUTPUT_DELIMITER = "EOF_TRANSLATION_REPORT_4c1b2e7d"


def configure_logging(trace: bool) -> None:
    """Configure console logging for every module of the package."""
    log_level = logging.DEBUG if trace else logging.INFO
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            existing_handler.setFormatter(formatter)

    # Suppress noisy debug logs from HTTP client/SDK libraries unless they escalate.
    for name in ["openai", "openai._base_client", "httpx", "httpcore"]:
        logging.getLogger(name).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="translate-gpt",
        description="Translate a strings file using an OpenAI-compatible chat API",
    )
    parser.add_argument("--api-token", help="API token for the provider (GPT_API_KEY)")
    parser.add_argument(
        "--model-name",
        help=f"Name of the model to use (GPT_MODEL_NAME, default: {DEFAULT_MODEL_NAME})",
    )
    parser.add_argument(
        "--request-timeout",
        type=int,
        help=f"Timeout for each request in seconds, 0 disables it "
        f"(GPT_REQUEST_TIMEOUT, default: {DEFAULT_REQUEST_TIMEOUT})",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        help=f"Sampling temperature between 0 and 2 (GPT_TEMPERATURE, default: {DEFAULT_TEMPERATURE})",
    )
    parser.add_argument(
        "--skip-translated",
        dest="skip_translated",
        action="store_true",
        default=None,
        help="Skip strings that have already been translated (GPT_SKIP_TRANSLATED, default)",
    )
    parser.add_argument(
        "--no-skip-translated",
        dest="skip_translated",
        action="store_false",
        help="Translate every string again, replacing existing translations",
    )
    parser.add_argument(
        "--source-language",
        help=f"Source language, 'auto' to let the model detect it "
        f"(GPT_SOURCE_LANGUAGE, default: {DEFAULT_SOURCE_LANGUAGE})",
    )
    parser.add_argument(
        "--target-language",
        help=f"Target language (GPT_TARGET_LANGUAGE, default: {DEFAULT_TARGET_LANGUAGE})",
    )
    parser.add_argument(
        "--source-file",
        help=f"Strings file to translate, one of {', '.join(AVAILABLE_EXTENSIONS)} (GPT_SOURCE_FILE)",
    )
    parser.add_argument(
        "--target-file",
        help="Strings file to update or create (GPT_TARGET_FILE)",
    )
    parser.add_argument(
        "--context", help="Common context for the translation (GPT_COMMON_CONTEXT)"
    )
    parser.add_argument(
        "--bunch-size",
        type=int,
        help="Number of strings to translate in a single request (GPT_BUNCH_SIZE)",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in LLMProvider],
        help=f"LLM provider to use (GPT_PROVIDER, default: {DEFAULT_PROVIDER})",
    )
    parser.add_argument(
        "--base-url", help="Override the provider API endpoint (GPT_BASE_URL)"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        help="Retries per request with exponential backoff (GPT_MAX_RETRIES, default: 0)",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Only report what would be translated, without calling the API or writing files",
    )
    parser.add_argument(
        "-l",
        "--log-trace",
        action="store_true",
        help="Log detailed trace information",
    )
    return parser


def load_config(args: argparse.Namespace) -> TranslateConfig:
    """Merge command-line arguments over GPT_* environment variables."""
    values = env_defaults()
    for field_name in (
        "api_token",
        "model_name",
        "request_timeout",
        "temperature",
        "skip_translated",
        "source_language",
        "target_language",
        "source_file",
        "target_file",
        "context",
        "bunch_size",
        "provider",
        "base_url",
        "max_retries",
    ):
        value = getattr(args, field_name)
        if value is not None:
            values[field_name] = value

    for required in ("source_file", "target_file"):
        if not values.get(required):
            raise ConfigurationError(
                f"--{required.replace('_', '-')} is required "
                f"(or set GPT_{required.upper()})"
            )

    return TranslateConfig(**values)


def write_report(report: str, dry_run: bool) -> None:
    if "GITHUB_OUTPUT" in os.environ:
        with open(os.environ["GITHUB_OUTPUT"], "a", encoding="utf-8") as f:
            print(f"translation_report<<{GITHUB_OUTPUT_DELIMITER}", file=f)
            print(report, file=f)
            print(GITHUB_OUTPUT_DELIMITER, file=f)
    elif not dry_run:
        print("\nTranslation Report:")
        print(report)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Parse arguments, run the translation pipeline and print the report.
    Exits with status 1 on any configuration or translation error.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.log_trace)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    # Don't print the config because it contains the API token
    logger.info(
        f"Source: {config.source_file}, Target: {config.target_file}, "
        f"Languages: {config.source_language} -> {config.target_language}, "
        f"Model: {config.model_name}, Provider: {config.provider}, "
        f"Bunch size: {config.bunch_size}, Skip translated: {config.skip_translated}, "
        f"Dry run: {args.dry_run}"
    )

    if not args.dry_run and not config.api_token:
        logger.error(
            "API token not found! Set GPT_API_KEY or pass --api-token "
            "(or use --dry-run to only report what would be translated)."
        )
        sys.exit(1)

    try:
        result = TranslationPipeline(config, dry_run=args.dry_run).run()
    except TranslatorError as e:
        logger.error(f"Translation failed: {e}")
        sys.exit(1)

    logger.info(
        f"Translated {len(result.translated)} strings with {result.api_calls} requests"
    )
    write_report(create_translation_report(result), args.dry_run)


if __name__ == "__main__":
    main()
