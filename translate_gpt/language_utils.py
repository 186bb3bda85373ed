from babel import Locale

import logging
import re
from typing import List, Optional

logger = logging.getLogger(__name__)

AUTO_LANGUAGE = "auto"

# CLDR plural categories in their canonical order
PLURAL_CATEGORIES = ("zero", "one", "two", "few", "many", "other")


def is_auto_language(language: Optional[str]) -> bool:
    """Return True when the language is unspecified and left to the model."""
    return not language or language.strip().lower() == AUTO_LANGUAGE


def _parse_locale(locale_code: str) -> Locale:
    normalized_code = re.sub(r"^b\+", "", locale_code)
    normalized_code = re.sub(r"-r(?=[A-Z]{2}$)", "_", normalized_code)
    normalized_code = re.sub(r"[-+]", "_", normalized_code)
    return Locale.parse(normalized_code)


def get_language_name(locale_code: str) -> str:
    """
    Get language name from various locale code formats using Babel.
    Handles Apple and Android resource qualifiers.

    Args:
        locale_code: A string representing a locale code in various formats:
                    - Language code (e.g., 'fr', 'zh')
                    - Language with region (e.g., 'en-US', 'pt_BR')
                    - Language with script (e.g., 'zh-Hans', 'sr-Latn')
                    - Android standard qualifier (e.g., 'en-rUS', 'zh-rCN')
                    - Android BCP 47 qualifier (e.g., 'b+sr+Latn')

    Returns:
        The display name of the language in English, including region or
        script if available. Returns the original locale_code if parsing fails.
    """
    try:
        return _parse_locale(locale_code).get_display_name(locale="en")

    except Exception as e:
        logger.warning(
            f"Could not determine language name for locale '{locale_code}': {e}"
        )
        return locale_code


def get_plural_categories(locale_code: str) -> Optional[List[str]]:
    """
    Return the CLDR plural categories a language uses, e.g. one/few/many/other
    for Polish. Returns None if Babel doesn't know the language.
    """
    try:
        tags = set(_parse_locale(locale_code).plural_form.tags) | {"other"}
    except Exception as e:
        logger.warning(
            f"Could not determine plural categories for locale '{locale_code}': {e}"
        )
        return None
    return [category for category in PLURAL_CATEGORIES if category in tags]


def describe_language(locale_code: str) -> str:
    """Return "Name (code)" for prompts, or just the code if Babel doesn't know it."""
    name = get_language_name(locale_code)
    if name == locale_code:
        return locale_code
    return f"{name} ({locale_code})"
