"""
Natural-key normalization.

Region and city identifiers come from codes (``DE-BY``), gazetteer ids or
``name_country`` composites. They are stored as ``[A-Za-z0-9_]`` strings so
the same entity keys identically across runs and sources.
"""

import re

_INVALID = re.compile(r"[^A-Za-z0-9_]+")
_UNDERSCORES = re.compile(r"_{2,}")


def normalize_identifier(raw: str | None) -> str:
    """Turn free-form text into a safe, stable natural-key string.

    Every character outside ``[A-Za-z0-9_]`` is removed, runs of ``_``
    collapse to one, and leading/trailing ``_`` are trimmed.

    An empty result means "no identifier available" and must not be used
    as a key.

    Examples:
        >>> normalize_identifier("DE-BY")
        'DEBY'
        >>> normalize_identifier("__Paris__FR_")
        'Paris_FR'
    """
    if not raw:
        return ""

    ident = _INVALID.sub("", str(raw))
    ident = _UNDERSCORES.sub("_", ident)
    return ident.strip("_")


def composite_identifier(name: str | None, country_code: str | None) -> str:
    """Build the ``name_country`` fallback key used when a source has no stable id."""
    if not name or not country_code:
        return ""
    return normalize_identifier(f"{name}_{country_code}")
