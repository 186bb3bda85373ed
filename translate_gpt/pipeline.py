#!/usr/bin/env python3
"""
Translation Pipeline

Loads a strings file, works out which entries still need translating, sends
them to the translation client batch by batch and writes the merged result to
the target file. Batches run sequentially in file order; the target file is
written once, after every batch has succeeded, so a failed run leaves it
untouched.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from translate_gpt.batch_planner import Batch, plan_batches
from translate_gpt.config import TranslateConfig
from translate_gpt.errors import ConfigurationError, FormatError, ResponseParseError
from translate_gpt.language_utils import get_language_name
from translate_gpt.llm_provider import (
    LLMClient,
    LLMConfig,
    OpenAITranslationClient,
    TranslationClient,
    TranslationOptions,
)
from translate_gpt.strings_codec import (
    StringsCodec,
    Translation,
    TranslationUnit,
    XCStringsCodec,
    codec_for_path,
)

logger = logging.getLogger(__name__)


@dataclass
class TranslationRunResult:
    """Summary of one pipeline run."""

    source_file: str
    target_file: str
    target_language: str
    translated: List[Dict[str, str]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    api_calls: int = 0
    written: bool = False


def merge_translations(
    batch: Batch, translations: List[Translation], codec: StringsCodec
) -> None:
    """
    Store each translation on the unit at the same index of the batch.

    Plural forms are merged over the forms already in the target, so
    categories the model did not return are kept.

    Raises:
        ResponseParseError: If the counts differ or a translation has the wrong shape
    """
    if len(translations) != len(batch):
        raise ResponseParseError(
            f"Expected {len(batch)} translations, got {len(translations)}"
        )
    for unit, translation in zip(batch, translations):
        if unit.is_plural:
            if not isinstance(translation, dict):
                raise ResponseParseError(f"Expected plural forms for '{unit.key}'")
            forms = dict(unit.existing_plurals or {})
            forms.update(codec.escape_plurals(translation, source_forms=unit.plurals))
            unit.existing_plurals = forms
        else:
            if not isinstance(translation, str):
                raise ResponseParseError(f"Expected a string translation for '{unit.key}'")
            unit.existing_translation = codec.escape_translation(
                translation, source_text=unit.source_text
            )


def _display_text(unit: TranslationUnit, translated: bool) -> str:
    """Text of a unit for logs and the report; plural forms as "quantity: text"."""
    if unit.is_plural:
        forms = unit.output_plurals if translated else unit.plurals
        return "; ".join(f"{quantity}: {text}" for quantity, text in forms.items())
    return unit.output_text if translated else unit.source_text


class TranslationPipeline:
    """
    Runs parse → filter → batch → translate → merge → write for one file.

    Args:
        config: Validated run configuration
        client: Translation client; an OpenAI client is built from the
                configuration when omitted and there is something to translate
        dry_run: Plan batches and report without calling the API or writing
    """

    def __init__(
        self,
        config: TranslateConfig,
        client: Optional[TranslationClient] = None,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.client = client
        self.dry_run = dry_run

    def _resolve_codec(self) -> StringsCodec:
        """Pick the codec for the source file and check the target uses the same format."""
        codec = codec_for_path(
            self.config.source_file,
            target_language=self.config.target_language,
            source_language=self.config.source_language,
        )
        target_codec = codec_for_path(
            self.config.target_file, target_language=self.config.target_language
        )
        if type(target_codec) is not type(codec):
            raise FormatError(
                f"Target file {self.config.target_file} must use the same format "
                f"as {self.config.source_file}"
            )
        return codec

    def _get_client(self) -> TranslationClient:
        if self.client is None:
            llm_config = LLMConfig(
                provider=self.config.provider,
                api_key=self.config.api_token,
                base_url=self.config.base_url,
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries,
            )
            self.client = OpenAITranslationClient(LLMClient(llm_config))
        return self.client

    def _options(self, codec: StringsCodec) -> TranslationOptions:
        return TranslationOptions(
            target_language=self.config.target_language,
            model=self.config.model_name,
            source_language=codec.source_language or self.config.source_language,
            context=self.config.context,
            temperature=self.config.temperature,
            timeout=self.config.request_timeout,
        )

    def load_units(self, codec: StringsCodec) -> List[TranslationUnit]:
        """Parse the source file and attach translations found in the target file."""
        units = codec.parse(self.config.source_file)

        same_file = Path(self.config.source_file).resolve() == Path(
            self.config.target_file
        ).resolve()
        if same_file and not isinstance(codec, XCStringsCodec):
            raise ConfigurationError(
                "Source and target file must differ unless translating a string catalog"
            )

        existing = codec.load_translations(self.config.target_file)
        for unit in units:
            if unit.key in existing:
                unit.attach_translation(existing[unit.key])

        logger.info(
            f"Loaded {len(units)} strings from {self.config.source_file} "
            f"({sum(1 for u in units if u.is_translated)} already translated)"
        )
        return units

    def run(self) -> TranslationRunResult:
        """
        Translate the source file into the target file.

        Returns:
            TranslationRunResult describing what was translated

        Raises:
            TranslatorError: Any failure aborts the run before the target is written
        """
        codec = self._resolve_codec()
        units = self.load_units(codec)

        batches = plan_batches(
            units, self.config.bunch_size, self.config.skip_translated
        )

        result = TranslationRunResult(
            source_file=self.config.source_file,
            target_file=self.config.target_file,
            target_language=self.config.target_language,
        )
        if self.config.skip_translated:
            result.skipped = [u.key for u in units if u.translatable and u.is_translated]

        pending = sum(len(batch) for batch in batches)
        mode = (
            f"bunches of {self.config.bunch_size}" if self.config.batched else "one string per request"
        )
        logger.info(
            f"Translating {pending} strings into {self.config.target_language} "
            f"in {len(batches)} requests ({mode}), skipping {len(result.skipped)}"
        )

        if self.dry_run:
            for batch in batches:
                logger.info(f"[dry run] Would translate: {', '.join(u.key for u in batch)}")
            return result

        if batches:
            client = self._get_client()
            options = self._options(codec)

            for index, batch in enumerate(batches, start=1):
                logger.info(
                    f"Translating batch {index}/{len(batches)} ({len(batch)} strings)"
                )
                translations = client.translate(batch, options)
                result.api_calls += 1
                merge_translations(batch, translations, codec)

                for unit in batch:
                    source = _display_text(unit, translated=False)
                    translation = _display_text(unit, translated=True)
                    logger.info(
                        f"Translated '{unit.key}' to {self.config.target_language}: "
                        f"'{source}' -> '{translation}'"
                    )
                    result.translated.append(
                        {"key": unit.key, "source": source, "translation": translation}
                    )

        codec.serialize(units, self.config.target_file)
        result.written = True
        return result


def create_translation_report(result: TranslationRunResult) -> str:
    """
    Generate a Markdown formatted translation report as a string.
    """
    report = "# Translation Report\n\n"
    report += f"**Source:** `{result.source_file}`  \n"
    report += f"**Target:** `{result.target_file}`  \n"
    report += f"**Language:** {get_language_name(result.target_language)}\n\n"

    if result.translated:
        report += "| Key | Source Text | Translated Text |\n"
        report += "| --- | ----------- | --------------- |\n"
        for entry in result.translated:
            source = entry["source"].replace("\n", " ").replace("|", "\\|")
            translation = entry["translation"].replace("\n", " ").replace("|", "\\|")
            report += f"| {entry['key']} | {source} | {translation} |\n"
        report += "\n"
    else:
        report += "No translations were performed.\n\n"

    if result.skipped:
        report += f"Skipped {len(result.skipped)} already translated strings.\n"

    return report
