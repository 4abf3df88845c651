"""
Latin-script rendering of place names.

Cyrillic names go through a hand-tuned table that follows the conventions
map renderers use for Russian, Ukrainian and Belarusian (``shch``, ``kh``,
``ts``, soft and hard signs dropped). Every other script is handed to
Unidecode and then stripped of diacritics.
"""

import re
import unicodedata
from typing import NamedTuple

from unidecode import unidecode


class Transliteration(NamedTuple):
    """Result of :func:`to_latin`."""
    text: str
    ok: bool


CYRILLIC_TO_LATIN = {
    "а": "a", "б": "b", "в": "v", "г": "g", "д": "d", "е": "e", "ё": "yo",
    "ж": "zh", "з": "z", "и": "i", "й": "y", "к": "k", "л": "l", "м": "m",
    "н": "n", "о": "o", "п": "p", "р": "r", "с": "s", "т": "t", "у": "u",
    "ф": "f", "х": "kh", "ц": "ts", "ч": "ch", "ш": "sh", "щ": "shch",
    "ъ": "", "ы": "y", "ь": "", "э": "e", "ю": "yu", "я": "ya",
    # Ukrainian / Belarusian
    "є": "ye", "і": "i", "ї": "yi", "ґ": "g", "ў": "u",
}

_CYRILLIC_RE = re.compile(r"[Ѐ-ӿ]")
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9 .'\-]")
_SPACES_RE = re.compile(r"\s+")
_LATIN_LETTER_RE = re.compile(r"[A-Za-z]")
_ASCII_LETTERS_RE = re.compile(r"^[A-Za-z]+$")
_NEEDS_TRANSLITERATION_RE = re.compile(r"[^A-Za-z0-9 .'\-]")


def _cyrillic_char(ch: str) -> str:
    latin = CYRILLIC_TO_LATIN.get(ch.lower())
    if latin is None:
        return ch
    if ch.isupper() and latin:
        return latin[0].upper() + latin[1:]
    return latin


def _strip_diacritics(text: str) -> str:
    text = unicodedata.normalize("NFKD", text)
    return "".join(c for c in text if not unicodedata.combining(c))


def needs_transliteration(text: str | None) -> bool:
    """True when a name has characters outside the canonical Latin set."""
    return bool(text) and bool(_NEEDS_TRANSLITERATION_RE.search(text))


def to_latin(text: str | None) -> Transliteration:
    """Render a name in Latin script.

    Returns ``ok=False`` when the cleaned result has no Latin letter, in which
    case the caller must keep whatever canonical name it already has.

    Examples:
        >>> to_latin("Москва")
        Transliteration(text='Moskva', ok=True)
        >>> to_latin("Щёлково")
        Transliteration(text='Shchyolkovo', ok=True)
    """
    if not text:
        return Transliteration("", False)

    if _ASCII_LETTERS_RE.match(text):
        return Transliteration(text, True)

    if _CYRILLIC_RE.search(text):
        # Latin letters mixed into a Cyrillic name still go through Unidecode
        converted = "".join(_cyrillic_char(ch) for ch in text)
        converted = unidecode(converted)
    else:
        converted = unidecode(_strip_diacritics(text))

    converted = _strip_diacritics(converted)
    cleaned = _DISALLOWED_RE.sub("", converted)
    cleaned = _SPACES_RE.sub(" ", cleaned).strip()

    if not _LATIN_LETTER_RE.search(cleaned):
        return Transliteration(cleaned, False)
    return Transliteration(cleaned, True)
