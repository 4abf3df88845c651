"""
Normalization utilities.

These modules turn source strings into stable natural keys and Latin-script
canonical names.
"""

from .identifiers import composite_identifier, normalize_identifier
from .transliteration import Transliteration, needs_transliteration, to_latin

__all__ = [
    'normalize_identifier',
    'composite_identifier',
    'to_latin',
    'needs_transliteration',
    'Transliteration',
]
