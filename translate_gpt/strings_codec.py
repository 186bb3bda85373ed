#!/usr/bin/env python3
"""
Strings File Codecs

This module reads localization files into ordered translation units and writes
them back in the same format. Three formats are supported, selected by file
extension:

  - Apple .strings files ("key" = "value"; with /* */ and // comments)
  - Xcode string catalogs (.xcstrings JSON holding every language)
  - Android resource files (strings.xml with <string> and <plurals>)

Each codec remembers the layout of the source file it parsed so that comments,
blank lines and unrelated elements survive when the translated file is written.
"""

import copy
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from lxml import etree

from translate_gpt.errors import ConfigurationError, FileWriteError, FormatError
from translate_gpt.language_utils import PLURAL_CATEGORIES
from translate_gpt.string_utils import escape_android_value, escape_strings_value

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# Existing translation of a unit: a string, or quantity -> text for plural groups
Translation = Union[str, Dict[str, str]]


def _plural_source_text(forms: Dict[str, str]) -> str:
    if "other" in forms:
        return forms["other"]
    return next(iter(forms.values()), "")


@dataclass
class TranslationUnit:
    """
    One key/source-text/translation entry of a strings file.

    Plural groups (Android <plurals>) carry their quantity forms in
    `plurals` and their translations in `existing_plurals`; the target
    language decides which quantities the translation has.
    """

    key: str
    source_text: str
    existing_translation: Optional[str] = None
    comment: Optional[str] = None
    translatable: bool = True
    plurals: Optional[Dict[str, str]] = None
    existing_plurals: Optional[Dict[str, str]] = None

    @property
    def is_plural(self) -> bool:
        return self.plurals is not None

    @property
    def is_translated(self) -> bool:
        if self.is_plural:
            return bool(self.existing_plurals)
        return bool(self.existing_translation)

    @property
    def output_text(self) -> str:
        """Text written to the target file: the translation, else the source."""
        if self.existing_translation is not None:
            return self.existing_translation
        return self.source_text

    @property
    def output_plurals(self) -> Dict[str, str]:
        """Quantity forms written to the target file: the translation, else the source."""
        if self.existing_plurals:
            return self.existing_plurals
        return self.plurals or {}

    def attach_translation(self, translation: Translation) -> None:
        """Store a translation read from the target file."""
        if self.is_plural:
            if isinstance(translation, dict):
                self.existing_plurals = dict(translation)
        elif isinstance(translation, str):
            self.existing_translation = translation


def _check_unique_keys(units: List[TranslationUnit], path: PathLike) -> None:
    seen = set()
    for unit in units:
        if unit.key in seen:
            raise FormatError(f"Duplicate key '{unit.key}' in {path}")
        seen.add(unit.key)


def _same_file(first: PathLike, second: PathLike) -> bool:
    return os.path.abspath(first) == os.path.abspath(second)


class StringsCodec(ABC):
    """
    Base class for strings file formats.

    Args:
        target_language: Language the translations are written for
        source_language: Language of the source text ("auto" when unknown)
    """

    extension = ""

    def __init__(
        self, target_language: Optional[str] = None, source_language: Optional[str] = None
    ) -> None:
        self.target_language = target_language
        self.source_language = source_language
        self.source_path: Optional[Path] = None

    def parse(self, path: PathLike) -> List[TranslationUnit]:
        """
        Parse a strings file into an ordered list of translation units.

        The file's layout is kept so that serialize() can reproduce it.

        Raises:
            FormatError: If the file is missing, unreadable or malformed
        """
        units = self._read(Path(path), remember=True)
        _check_unique_keys(units, path)
        self.source_path = Path(path)
        logger.debug(f"Parsed {len(units)} entries from {path}")
        return units

    def load_translations(self, path: PathLike) -> Dict[str, Translation]:
        """
        Return the translations already present in a target file.

        Plural groups map to their quantity forms. A target that does not
        exist yet has no translations.
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"Target file {path} does not exist yet")
            return {}

        translations: Dict[str, Translation] = {}
        for unit in self._read(path, remember=False):
            if unit.is_plural:
                forms = {q: text for q, text in unit.plurals.items() if text}
                if forms:
                    translations[unit.key] = forms
            elif unit.source_text:
                translations[unit.key] = unit.source_text
        logger.debug(f"Loaded {len(translations)} existing translations from {path}")
        return translations

    @abstractmethod
    def serialize(self, units: List[TranslationUnit], path: PathLike) -> None:
        """
        Write the units to path in this codec's format.

        Raises:
            FileWriteError: If the file or its parent directory cannot be written
        """

    def escape_translation(self, text: str, source_text: Optional[str] = None) -> str:
        """Convert a plain translation into the on-disk representation of the format."""
        return text

    def escape_plurals(
        self, forms: Dict[str, str], source_forms: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """Escape every quantity form, aligned with the source's "other" form when missing."""
        source_forms = source_forms or {}
        fallback = _plural_source_text(source_forms) if source_forms else None
        return {
            quantity: self.escape_translation(
                text, source_text=source_forms.get(quantity, fallback)
            )
            for quantity, text in forms.items()
        }

    @abstractmethod
    def _read(self, path: Path, remember: bool) -> List[TranslationUnit]:
        """Read units from path, storing the document layout when remember is set."""

    def _read_text(self, path: Path) -> str:
        try:
            raw = path.read_bytes()
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            raise FormatError(f"Could not read {path}: {e}") from e

        # Xcode historically writes .strings files as UTF-16 with a BOM
        if raw.startswith((b"\xff\xfe", b"\xfe\xff")):
            encoding = "utf-16"
        else:
            encoding = "utf-8-sig"

        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise FormatError(f"{path} is not valid {encoding}: {e}") from e

    def _write_text(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Error writing {path}: {e}")
            raise FileWriteError(f"Could not write {path}: {e}") from e
        logger.info(f"Wrote {path}")


# ------------------------------------------------------------------------------
# Apple .strings
# ------------------------------------------------------------------------------

_BARE_KEY_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+")


@dataclass
class _StringsEntry:
    """An entry's text split so that only the value span is rewritten."""

    key: str
    head: str
    value: str
    tail: str


def _line_number(content: str, index: int) -> int:
    return content.count("\n", 0, index) + 1


def _scan_quoted(content: str, start: int, path: PathLike) -> int:
    """Return the index just past the closing quote of the string opened at start."""
    i = start + 1
    while i < len(content):
        ch = content[i]
        if ch == "\\":
            i += 2
        elif ch == '"':
            return i + 1
        else:
            i += 1
    raise FormatError(f"{path}:{_line_number(content, start)}: unterminated string")


def _scan_comment(content: str, start: int, path: PathLike) -> int:
    """Return the index just past the /* */ or // comment starting at start."""
    if content.startswith("//", start):
        end = content.find("\n", start)
        return len(content) if end == -1 else end
    end = content.find("*/", start + 2)
    if end == -1:
        raise FormatError(f"{path}:{_line_number(content, start)}: unterminated comment")
    return end + 2


def _skip_trivia(content: str, start: int, path: PathLike) -> int:
    """Skip whitespace and comments, returning the index of the next token."""
    i = start
    while i < len(content):
        if content[i].isspace():
            i += 1
        elif content.startswith(("/*", "//"), i):
            i = _scan_comment(content, i, path)
        else:
            break
    return i


def _scan_entry(content: str, start: int, path: PathLike) -> Tuple[_StringsEntry, int]:
    """Scan `key = "value";` starting at start; the semicolon is optional."""
    if content[start] == '"':
        key_end = _scan_quoted(content, start, path)
        key = content[start + 1 : key_end - 1]
    else:
        match = _BARE_KEY_PATTERN.match(content, start)
        if not match:
            raise FormatError(
                f"{path}:{_line_number(content, start)}: unexpected character {content[start]!r}"
            )
        key_end = match.end()
        key = match.group()

    i = _skip_trivia(content, key_end, path)
    if not content.startswith("=", i):
        raise FormatError(f"{path}:{_line_number(content, i)}: expected '=' after key '{key}'")

    i = _skip_trivia(content, i + 1, path)
    if not content.startswith('"', i):
        raise FormatError(
            f"{path}:{_line_number(content, i)}: expected a quoted value for key '{key}'"
        )
    value_end = _scan_quoted(content, i, path)

    end = value_end
    terminator = _skip_trivia(content, value_end, path)
    if content.startswith(";", terminator):
        end = terminator + 1

    entry = _StringsEntry(
        key=key,
        head=content[start : i + 1],
        value=content[i + 1 : value_end - 1],
        tail=content[value_end - 1 : end],
    )
    return entry, end


def _comment_text(lines: List[str]) -> Optional[str]:
    text = "\n".join(
        re.sub(r"^\s*(?:/\*+|//)|\*+/\s*$", "", line.rstrip("\r\n")).strip()
        for line in lines
    ).strip()
    return text or None


class AppleStringsCodec(StringsCodec):
    """Codec for Apple "key" = "value"; strings files. Values keep their escapes."""

    extension = ".strings"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._lines: List[Union[str, _StringsEntry]] = []

    def _read(self, path: Path, remember: bool) -> List[TranslationUnit]:
        content = self._read_text(path)
        layout: List[Union[str, _StringsEntry]] = []
        units: List[TranslationUnit] = []
        comment_lines: List[str] = []
        # Comments on the same line as the previous entry belong to that entry
        after_entry = False
        raw_start = 0
        i = 0

        while i < len(content):
            if content[i].isspace():
                end = i
                while end < len(content) and content[end].isspace():
                    end += 1
                newlines = content.count("\n", i, end)
                if newlines:
                    after_entry = False
                if newlines > 1:
                    # A blank line separates a comment from the next entry
                    comment_lines = []
                i = end
                continue

            if content.startswith(("/*", "//"), i):
                end = _scan_comment(content, i, path)
                text = content[i:end]
                if not after_entry:
                    if text.startswith("/*"):
                        comment_lines = text.splitlines()
                    else:
                        comment_lines.append(text)
                i = end
                continue

            if raw_start < i:
                layout.append(content[raw_start:i])
            entry, i = _scan_entry(content, i, path)
            layout.append(entry)
            units.append(
                TranslationUnit(
                    key=entry.key,
                    source_text=entry.value,
                    comment=_comment_text(comment_lines),
                )
            )
            comment_lines = []
            after_entry = True
            raw_start = i

        if raw_start < len(content):
            layout.append(content[raw_start:])

        if remember:
            self._lines = layout
        return units

    def serialize(self, units: List[TranslationUnit], path: PathLike) -> None:
        by_key = {unit.key: unit for unit in units}
        written = set()
        output: List[str] = []

        for item in self._lines:
            if isinstance(item, str):
                output.append(item)
                continue
            unit = by_key.get(item.key)
            value = unit.output_text if unit else item.value
            output.append(f"{item.head}{value}{item.tail}")
            written.add(item.key)

        for unit in units:
            if unit.key in written:
                continue
            if output and not output[-1].endswith("\n"):
                output.append("\n")
            if unit.comment:
                output.append(f"/* {unit.comment} */\n")
            output.append(f'"{unit.key}" = "{unit.output_text}";\n')

        self._write_text(Path(path), "".join(output))

    def escape_translation(self, text: str, source_text: Optional[str] = None) -> str:
        return escape_strings_value(text, reference_text=source_text)


# ------------------------------------------------------------------------------
# Xcode string catalogs (.xcstrings)
# ------------------------------------------------------------------------------


def _string_unit_value(entry: Dict, language: str) -> Optional[str]:
    localization = entry.get("localizations", {}).get(language, {})
    return localization.get("stringUnit", {}).get("value")


class XCStringsCodec(StringsCodec):
    """
    Codec for Xcode string catalogs.

    A catalog holds every language, so the source text comes from the
    catalog's source language and existing translations from the target
    language of the same or another catalog. Entries that use variations
    (plural or device rules) are left untouched.
    """

    extension = ".xcstrings"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._document: Optional[Dict] = None
        if not self.target_language:
            raise ConfigurationError("String catalogs need a target language")

    def _load_document(self, path: Path) -> Dict:
        try:
            document = json.loads(self._read_text(path))
        except json.JSONDecodeError as e:
            logger.error(f"JSON parse error in {path}: {e}")
            raise FormatError(f"{path} is not a valid string catalog: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("strings"), dict):
            raise FormatError(f"{path} is not a valid string catalog: missing 'strings'")
        return document

    def _read(self, path: Path, remember: bool) -> List[TranslationUnit]:
        document = self._load_document(path)
        catalog_language = document.get("sourceLanguage", "en")
        units: List[TranslationUnit] = []

        for key, entry in document["strings"].items():
            entry = entry or {}
            source_localization = entry.get("localizations", {}).get(catalog_language, {})
            has_variations = "variations" in source_localization

            if remember:
                source_text = _string_unit_value(entry, catalog_language) or key
                translation = _string_unit_value(entry, self.target_language)
            else:
                # Reading a target catalog: its translations are the unit values
                source_text = _string_unit_value(entry, self.target_language) or ""
                translation = None

            if has_variations:
                logger.debug(f"Leaving '{key}' untouched: variations are not translated")

            units.append(
                TranslationUnit(
                    key=key,
                    source_text=source_text,
                    existing_translation=translation,
                    comment=entry.get("comment"),
                    translatable=entry.get("shouldTranslate", True) and not has_variations,
                )
            )

        if remember:
            self._document = document
            if not self.source_language or self.source_language == "auto":
                self.source_language = catalog_language
        return units

    def serialize(self, units: List[TranslationUnit], path: PathLike) -> None:
        path = Path(path)
        source_strings = (self._document or {}).get("strings", {})

        if path.exists() and not (self.source_path and _same_file(path, self.source_path)):
            document = self._load_document(path)
        elif self._document is not None:
            document = copy.deepcopy(self._document)
        else:
            document = {"sourceLanguage": self.source_language or "en", "strings": {}}

        strings = document.setdefault("strings", {})
        for unit in units:
            if not unit.translatable or not unit.existing_translation:
                continue
            if unit.key not in strings:
                strings[unit.key] = copy.deepcopy(source_strings.get(unit.key, {}))
            entry = strings[unit.key]
            if entry is None:
                entry = strings[unit.key] = {}
            localization = entry.setdefault("localizations", {}).setdefault(
                self.target_language, {}
            )
            localization["stringUnit"] = {
                "state": "translated",
                "value": unit.existing_translation,
            }

        document.setdefault("version", "1.0")
        content = json.dumps(document, ensure_ascii=False, indent=2, separators=(",", " : "))
        self._write_text(path, content + "\n")


# ------------------------------------------------------------------------------
# Android strings.xml
# ------------------------------------------------------------------------------


def _create_secure_parser() -> etree.XMLParser:
    """Return an XML parser that keeps whitespace and never resolves external entities."""
    return etree.XMLParser(
        remove_blank_text=False,
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
    )


def _serialize_inner_xml(element) -> str:
    """Serialize the inner XML of an element, preserving nested markup."""
    segments: List[str] = []

    if element.text:
        segments.append(element.text)

    for child in element:
        segments.append(etree.tostring(child, encoding="unicode", with_tail=False))
        if child.tail:
            segments.append(child.tail)

    return "".join(segments).strip()


def _set_element_inner_xml(element, content: str) -> None:
    """Replace an element's inner XML while keeping nested markup intact."""
    for child in list(element):
        element.remove(child)

    content = (content or "").strip()
    # Bare ampersands would make otherwise valid markup unparseable
    content = re.sub(r"&(?!#?\w+;)", "&amp;", content)

    try:
        wrapper = etree.fromstring(
            f"<__wrapper__>{content}</__wrapper__>", parser=_create_secure_parser()
        )
    except etree.XMLSyntaxError:
        # Not well-formed markup, store as plain text and let lxml escape it
        element.text = content
        return

    element.text = wrapper.text
    for child in wrapper:
        element.append(child)


def _ordered_quantities(forms: Dict[str, str]) -> List[str]:
    """Sort quantities in CLDR order, unknown ones last."""
    return sorted(
        forms,
        key=lambda q: PLURAL_CATEGORIES.index(q) if q in PLURAL_CATEGORIES else len(PLURAL_CATEGORIES),
    )


def _write_plural_items(element, forms: Dict[str, str], indent: str) -> None:
    """Replace the <item> children of a <plurals> element with the given forms."""
    for child in list(element):
        element.remove(child)

    element.text = "\n" + indent * 2
    for quantity in _ordered_quantities(forms):
        item = etree.SubElement(element, "item", quantity=quantity)
        _set_element_inner_xml(item, forms[quantity])
        item.tail = "\n" + indent * 2
    if len(element) > 0:
        element[-1].tail = "\n" + indent


class AndroidXmlCodec(StringsCodec):
    """
    Codec for Android strings.xml resources.

    Each <string> is a unit keyed by its name. Each <plurals> is a single
    unit holding its quantity forms, so a translation can use the plural
    categories of the target language rather than those of the source.
    Strings marked translatable="false" are read but never translated, and
    are dropped from a separate target file.
    """

    extension = ".xml"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._tree = None

    def _read(self, path: Path, remember: bool) -> List[TranslationUnit]:
        try:
            tree = etree.parse(str(path), _create_secure_parser())
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            raise FormatError(f"Could not read {path}: {e}") from e
        except etree.XMLSyntaxError as e:
            logger.error(f"XML parse error in {path}: {e}")
            raise FormatError(f"XML parse error in {path}: {e}") from e

        root = tree.getroot()
        if root.tag != "resources":
            raise FormatError(f"{path}: root element must be <resources>, got <{root.tag}>")

        units: List[TranslationUnit] = []
        comment: Optional[str] = None

        for elem in root:
            if elem.tag is etree.Comment:
                comment = (elem.text or "").strip() or None
                continue

            name = elem.attrib.get("name")
            translatable = elem.attrib.get("translatable", "true").lower() != "false"

            if elem.tag == "string" and name:
                units.append(
                    TranslationUnit(
                        key=name,
                        source_text=_serialize_inner_xml(elem),
                        comment=comment,
                        translatable=translatable,
                    )
                )
            elif elem.tag == "plurals" and name:
                forms = {
                    item.attrib["quantity"]: _serialize_inner_xml(item)
                    for item in elem.findall("item")
                    if item.attrib.get("quantity")
                }
                units.append(
                    TranslationUnit(
                        key=name,
                        source_text=_plural_source_text(forms),
                        comment=comment,
                        translatable=translatable,
                        plurals=forms,
                    )
                )
            comment = None

        if remember:
            self._tree = tree
        return units

    def _new_tree(self):
        return etree.ElementTree(etree.Element("resources"))

    def serialize(self, units: List[TranslationUnit], path: PathLike) -> None:
        path = Path(path)
        tree = copy.deepcopy(self._tree) if self._tree is not None else self._new_tree()
        root = tree.getroot()
        in_place = self.source_path is not None and _same_file(path, self.source_path)
        by_key = {unit.key: unit for unit in units}
        written = set()

        # Detect the indentation style from the existing file (default to 4 spaces)
        indent = "    "
        if len(root) > 0:
            m = re.match(r"\n([ \t]+)", root.text or "")
            if m:
                indent = m.group(1)

        for elem in list(root):
            if elem.tag is etree.Comment:
                continue
            name = elem.attrib.get("name")
            translatable = elem.attrib.get("translatable", "true").lower() != "false"

            if not in_place and (not translatable or elem.tag not in ("string", "plurals")):
                root.remove(elem)
                continue

            if elem.tag == "string":
                self._update_element(elem, by_key.get(name))
            elif elem.tag == "plurals":
                self._update_plurals(elem, by_key.get(name), indent)
            written.add(name)

        for unit in units:
            if unit.key in written or (not in_place and not unit.translatable):
                continue
            self._append_unit(root, unit, indent)

        if len(root) > 0:
            if not root.text or root.text == "\n":
                root.text = "\n" + indent
            for elem in root[:-1]:
                if not (elem.tail or "").startswith("\n"):
                    elem.tail = "\n" + indent
            root[-1].tail = "\n"

        xml_text = etree.tostring(tree, encoding="unicode", xml_declaration=False)
        self._write_text(path, '<?xml version="1.0" encoding="utf-8"?>\n' + xml_text.rstrip("\n") + "\n")

    def _update_element(self, element, unit: Optional[TranslationUnit]) -> None:
        if unit is None or unit.is_plural:
            return
        if _serialize_inner_xml(element) != unit.output_text.strip():
            _set_element_inner_xml(element, unit.output_text)
            logger.debug(f"Updated '{unit.key}'")

    def _update_plurals(self, element, unit: Optional[TranslationUnit], indent: str) -> None:
        if unit is None or not unit.is_plural:
            return
        forms = unit.output_plurals
        current = {
            item.attrib.get("quantity"): _serialize_inner_xml(item)
            for item in element.findall("item")
        }
        if current == {quantity: text.strip() for quantity, text in forms.items()}:
            return
        _write_plural_items(element, forms, indent)
        logger.debug(f"Updated plurals '{unit.key}': {', '.join(_ordered_quantities(forms))}")

    def _append_unit(self, root, unit: TranslationUnit, indent: str) -> None:
        if len(root) > 0:
            root[-1].tail = "\n" + indent

        tag = "plurals" if unit.is_plural else "string"
        new_elem = etree.SubElement(root, tag, name=unit.key)
        if not unit.translatable:
            new_elem.set("translatable", "false")
        if unit.is_plural:
            _write_plural_items(new_elem, unit.output_plurals, indent)
        else:
            _set_element_inner_xml(new_elem, unit.output_text)
        new_elem.tail = "\n"
        logger.debug(f"Appended <{tag} name='{unit.key}'>")

    def escape_translation(self, text: str, source_text: Optional[str] = None) -> str:
        return escape_android_value(text, reference_text=source_text)


# ------------------------------------------------------------------------------
# Codec selection
# ------------------------------------------------------------------------------

CODECS = {
    AppleStringsCodec.extension: AppleStringsCodec,
    XCStringsCodec.extension: XCStringsCodec,
    AndroidXmlCodec.extension: AndroidXmlCodec,
}

AVAILABLE_EXTENSIONS: Tuple[str, ...] = tuple(CODECS)


def codec_for_path(
    path: PathLike,
    target_language: Optional[str] = None,
    source_language: Optional[str] = None,
) -> StringsCodec:
    """
    Create the codec matching a file's extension.

    Raises:
        FormatError: If the extension is not one of AVAILABLE_EXTENSIONS
    """
    extension = os.path.splitext(str(path))[1].lower()
    codec_class = CODECS.get(extension)
    if codec_class is None:
        raise FormatError(
            f"Translation file must have any of these extensions: "
            f"{', '.join(AVAILABLE_EXTENSIONS)} (got '{path}')"
        )
    return codec_class(target_language=target_language, source_language=source_language)
