"""
Field alias tables for the reference datasets.

Natural Earth exports, the geo-countries GeoJSON, Geofabrik OSM shapefiles and
timezone-boundary-builder all name the same attributes differently (``ISO_A2``
vs ``iso_a2`` vs ``ISO3166-1:alpha2`` ...). Each canonical attribute gets one
ordered tuple of ``FieldRule(alias, parser)`` pairs; the first rule whose
parser accepts the value wins.

``FEATURE_ID`` is a pseudo-alias addressing the feature-level ``id`` member
instead of a property.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional


FEATURE_ID = "@id"

# Natural Earth writes -99 where a code does not exist
MISSING_SENTINELS = frozenset({"-99", "-1", "N/A", "NULL"})

Parser = Callable[[Any], Optional[str]]


@dataclass(frozen=True)
class FieldRule:
    """One alias of a canonical attribute and the parser that validates it."""
    alias: str
    parser: Parser


# =============================================================================
# Parsers
# =============================================================================

def text(value: Any) -> Optional[str]:
    """Non-blank string, stripped."""
    if value is None or isinstance(value, bool):
        return None
    value = str(value).strip()
    if not value or value in MISSING_SENTINELS:
        return None
    return value


def country_code(length: int) -> Parser:
    """Build a parser accepting only alphabetic codes of ``length`` letters, uppercased."""
    def parse(value: Any) -> Optional[str]:
        value = text(value)
        if value is None or len(value) != length or not value.isalpha() or not value.isascii():
            return None
        return value.upper()
    parse.__name__ = f"alpha{length}"
    return parse


alpha2 = country_code(2)
alpha3 = country_code(3)

_SUBDIVISION_RE = re.compile(r"^([A-Za-z]{2})-[A-Za-z0-9]{1,3}$")


def subdivision_country(value: Any) -> Optional[str]:
    """Country prefix of an ISO 3166-2 subdivision code (``DE-BY`` -> ``DE``)."""
    value = text(value)
    if value is None:
        return None
    match = _SUBDIVISION_RE.match(value)
    return match.group(1).upper() if match else None


def numeric_id(prefix: str) -> Parser:
    """Build a parser for positive integer ids, returned as ``<prefix><n>``."""
    def parse(value: Any) -> Optional[str]:
        value = text(value)
        if value is None:
            return None
        try:
            number = int(float(value))
        except (ValueError, OverflowError):
            return None
        if number <= 0:
            return None
        return f"{prefix}{number}"
    parse.__name__ = f"numeric_id_{prefix.lower()}"
    return parse


_WIKIDATA_RE = re.compile(r"^Q\d+$")


def wikidata_id(value: Any) -> Optional[str]:
    """Wikidata item id (``Q183``); anything else is discarded."""
    value = text(value)
    if value is None:
        return None
    value = value.upper()
    return value if _WIKIDATA_RE.match(value) else None


_TZID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_+\-]*(/[A-Za-z0-9_+\-]+)*$")


def timezone_id(value: Any) -> Optional[str]:
    """IANA timezone identifier shape (``Europe/Berlin``, ``Etc/GMT+5``, ``UTC``)."""
    value = text(value)
    if value is None or not _TZID_RE.match(value):
        return None
    return value


def rules(parser: Parser, *aliases: str) -> tuple[FieldRule, ...]:
    """Shorthand for several aliases sharing one parser."""
    return tuple(FieldRule(alias, parser) for alias in aliases)


# =============================================================================
# Shared alias groups
# =============================================================================

NAME_RULES = (
    rules(text, "NAMEASCII", "nameascii", "name_ascii")
    + rules(text, "NAME_EN", "name_en", "name:en")
    + rules(text, "NAME", "name", "ADMIN", "NAME_LONG")
    + rules(text, "name_local", "NAME_LOCAL", "local_name")
)

LOCAL_NAME_RULES = rules(text, "name_local", "NAME_LOCAL", "local_name", "name", "NAME")

WIKIDATA_RULES = rules(
    wikidata_id,
    "wikidata", "WIKIDATA", "wikidataid", "WIKIDATAID", "wikidata_id", "WIKIDATA_ID",
)


@dataclass(frozen=True)
class EntityRules:
    """Ordered alias tables for one entity within one source family."""
    alpha2: tuple[FieldRule, ...] = ()
    alpha3: tuple[FieldRule, ...] = ()
    name: tuple[FieldRule, ...] = NAME_RULES
    name_local: tuple[FieldRule, ...] = LOCAL_NAME_RULES
    identifier: tuple[FieldRule, ...] = ()
    region_hint: tuple[FieldRule, ...] = ()
    wikidata: tuple[FieldRule, ...] = WIKIDATA_RULES
    timezone: tuple[FieldRule, ...] = ()


# =============================================================================
# Entity tables
# =============================================================================

COUNTRY_RULES = EntityRules(
    alpha2=(
        rules(alpha2, "ISO_A2", "iso_a2", "ISO_A2_EH", "iso_a2_eh")
        + rules(alpha2, "ISO3166-1:alpha2", "ISO3166-1-Alpha-2", "ISO3166-1", "ISO", "addr:country")
        + rules(alpha2, FEATURE_ID)
    ),
    alpha3=(
        rules(alpha3, "ISO_A3", "iso_a3", "ISO_A3_EH", "iso_a3_eh", "ADM0_A3", "adm0_a3")
        + rules(alpha3, "ISO3166-1:alpha3", "ISO3166-1-Alpha-3", "ISO3166-1", "ISO")
        + rules(alpha3, FEATURE_ID)
    ),
)

REGION_RULES = EntityRules(
    alpha2=(
        rules(alpha2, "ISO_A2", "iso_a2", "ADM0_ISO", "adm0_iso")
        + rules(alpha2, "ISO3166-1:alpha2", "addr:country")
        + rules(subdivision_country, "ISO_3166_2", "iso_3166_2")
        + rules(alpha2, FEATURE_ID)
    ),
    alpha3=(
        rules(alpha3, "ADM0_A3", "adm0_a3", "ISO_A3", "iso_a3", "ADM0_ISO", "adm0_iso")
        + rules(alpha3, "ISO3166-1:alpha3")
        + rules(alpha3, FEATURE_ID)
    ),
    identifier=(
        rules(text, "ISO_3166_2", "iso_3166_2", "ADM1_CODE", "adm1_code")
        + rules(text, "POSTAL", "postal", "POSTAL_CODE", "postal_code")
    ),
)

CITY_RULES = EntityRules(
    alpha2=(
        rules(alpha2, "ISO_A2", "iso_a2", "ADM0_ISO", "adm0_iso")
        + rules(alpha2, "ISO3166-1:alpha2", "addr:country")
    ),
    alpha3=(
        rules(alpha3, "ADM0_A3", "adm0_a3", "ISO_A3", "iso_a3", "SOV_A3", "sov_a3")
        + rules(alpha3, "ISO3166-1:alpha3")
    ),
    identifier=(
        rules(numeric_id("GN"), "GEONAMEID", "geonameid", "GN_ID", "gn_id")
        + rules(numeric_id("OSM"), "osm_id", "OSM_ID")
    ),
    region_hint=rules(text, "is_in:state", "addr:state", "is_in:province", "ADM1NAME", "adm1name"),
)

# Geofabrik place polygons carry no country field; the loader supplies a default
OSM_CITY_RULES = EntityRules(
    alpha2=rules(alpha2, "ISO3166-1:alpha2", "addr:country"),
    name=rules(text, "name:en", "name"),
    name_local=rules(text, "name"),
    identifier=rules(numeric_id("OSM"), "osm_id"),
    region_hint=rules(text, "is_in:state", "addr:state", "is_in:province"),
)

TIMEZONE_RULES = EntityRules(
    name=(),
    name_local=(),
    wikidata=(),
    timezone=rules(timezone_id, "tzid", "TZID", "timezone", "TIMEZONE"),
)
