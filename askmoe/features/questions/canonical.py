"""
askmoe/features/questions/canonical.py

Canonical identity for questions.

Two asks share an answer when their question text, platform and version
slug to the same parts. Latin letters are transliterated to ASCII
("Größe" -> "grosse", "Størage" -> "storage"); other scripts are dropped,
so a question written entirely in a non-Latin script slugs to "" (lossy
on purpose).
"""

import re
import unicodedata
from typing import NamedTuple, Optional

from text_unidecode import unidecode

GENERIC = "generic"
KEY_SEPARATOR = ":"

# Symbols spelled out before filtering, so "cut & paste" -> "cut-and-paste"
_SYMBOL_WORDS = {"&": "and", "$": "dollar", "%": "percent", "<": "less", ">": "greater", "|": "or"}
# Hyphens count as whitespace; every other non-alphanumeric, "_" included, is deleted
_SEPARATOR_RE = re.compile(r"-")
_NON_SLUG_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RUN_RE = re.compile(r"\s+")


class CanonicalParts(NamedTuple):
    platform: str
    version: str
    question: str

    @property
    def key(self) -> str:
        return KEY_SEPARATOR.join(self)


def _fold_char(ch: str) -> str:
    if ch.isascii():
        return _SYMBOL_WORDS.get(ch, ch)
    if ch.isspace():
        return " "
    if "LATIN" in unicodedata.name(ch, ""):
        return unidecode(ch)
    return ""


def slugify(value: Optional[str]) -> str:
    """Lower-case, transliterate and hyphenate a single field."""
    text = "".join(_fold_char(ch) for ch in unicodedata.normalize("NFC", value or ""))
    text = _SEPARATOR_RE.sub(" ", text.lower())
    text = _NON_SLUG_RE.sub("", text)
    return _WHITESPACE_RUN_RE.sub("-", text.strip())


def _slug_or_generic(value: Optional[str]) -> str:
    return slugify(value) or GENERIC


def canonical_parts(question_text: str, platform: Optional[str] = None, version: Optional[str] = None) -> CanonicalParts:
    # platform/version that slug to nothing collapse to "generic" so the
    # output parts canonicalize to themselves
    return CanonicalParts(
        platform=_slug_or_generic(platform),
        version=_slug_or_generic(version),
        question=slugify(question_text),
    )


def canonicalize(question_text: str, platform: Optional[str] = None, version: Optional[str] = None) -> str:
    """Return `platform:version:question` for an ask."""
    return canonical_parts(question_text, platform, version).key


def split_key(key: str) -> CanonicalParts:
    platform, version, question = key.split(KEY_SEPARATOR, 2)
    return CanonicalParts(platform, version, question)
