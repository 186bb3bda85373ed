#!/usr/bin/env python3
"""Helpers for escaping translated text before it is written to a strings file."""

from typing import List, Optional, Tuple
import re

__all__ = [
    "escape_apostrophes",
    "escape_double_quotes",
    "escape_android_value",
    "escape_strings_value",
]

_BACKSLASH_SEQUENCE_TARGETS = set("nrt\"'")
_HTML_TAG_PATTERN = re.compile(r"<[^>]+>")


def _escape_character(text: str, target: str) -> str:
    """Escape occurrences of a character unless an odd run of backslashes precedes it."""
    result: List[str] = []
    backslash_run = 0

    for ch in text:
        if ch == "\\":
            backslash_run += 1
        elif ch == target and backslash_run % 2 == 0:
            result.append("\\")
            backslash_run = 0
        else:
            backslash_run = 0
        result.append(ch)

    return "".join(result)


def escape_apostrophes(text: Optional[str]) -> Optional[str]:
    """Escape apostrophes with a single backslash, preserving existing escapes."""
    if not text:
        return text
    return _escape_character(text, "'")


def escape_double_quotes(text: Optional[str]) -> Optional[str]:
    """Escape double quotes with a single backslash, preserving existing escapes."""
    if not text:
        return text
    return _escape_character(text, '"')


def _normalize_line_breaks(text: str) -> str:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return normalized.replace("\n", "\\n")


def _extract_backslash_sequences(text: str) -> List[Tuple[str, int]]:
    """Return (escaped character, backslash count) pairs in order of appearance."""
    return [
        (match.group(2), len(match.group(1)))
        for match in re.finditer(r"(\\+)(.)", text)
        if match.group(2) in _BACKSLASH_SEQUENCE_TARGETS
    ]


def _align_backslash_sequences_with_reference(
    text: str, reference_text: Optional[str]
) -> str:
    """
    Make escape sequences in a translation use as many backslashes as the source.

    Models frequently double-escape sequences such as \\n. Each escape in the
    translation is matched to the next unused escape of the same character in
    the reference and rewritten with the reference's backslash count.
    """
    if not text or not reference_text:
        return text

    reference_sequences = _extract_backslash_sequences(reference_text)
    if not reference_sequences:
        return text

    ref_index = 0

    def _replace(match: "re.Match") -> str:
        nonlocal ref_index
        follower = match.group(2)
        if follower not in _BACKSLASH_SEQUENCE_TARGETS:
            return match.group(0)
        for idx in range(ref_index, len(reference_sequences)):
            seq_char, seq_count = reference_sequences[idx]
            if seq_char == follower:
                ref_index = idx + 1
                return "\\" * seq_count + follower
        return match.group(0)

    return re.sub(r"(\\+)(.)", _replace, text)


def _collapse_redundant_quote_backslashes(text: str) -> str:
    """Collapse two or more backslashes before a quote into exactly one."""
    return re.sub(r"\\{2,}([\"'])", r"\\\1", text)


def escape_android_value(
    text: Optional[str], reference_text: Optional[str] = None
) -> Optional[str]:
    """
    Escape a translation for an Android <string> element.

    Apostrophes and double quotes are escaped outside of HTML tags, raw line
    breaks become \\n, and escape sequences are aligned with the source text.
    """
    if not text:
        return text

    value = _normalize_line_breaks(text)

    if _HTML_TAG_PATTERN.search(value):
        segments = re.split(r"(<[^>]+>)", value)
        value = "".join(
            segment
            if segment.startswith("<") and segment.endswith(">")
            else escape_double_quotes(escape_apostrophes(segment))
            for segment in segments
            if segment
        )
    else:
        value = escape_double_quotes(escape_apostrophes(value))

    value = _align_backslash_sequences_with_reference(value, reference_text)
    return _collapse_redundant_quote_backslashes(value)


def escape_strings_value(
    text: Optional[str], reference_text: Optional[str] = None
) -> Optional[str]:
    """
    Escape a translation for the quoted value of an Apple .strings entry.

    Only double quotes and line breaks need escaping; apostrophes are left
    alone because they are legal inside a double-quoted value.
    """
    if not text:
        return text

    value = escape_double_quotes(_normalize_line_breaks(text))
    value = _align_backslash_sequences_with_reference(value, reference_text)
    return re.sub(r'\\{2,}"', r'\\"', value)
