"""
Schema-adaptive field extraction.

Turns one GeoJSON feature (property bag + geometry) into a canonical record
for the merge engine, or into a :class:`Rejection` carrying a reason category.
Extraction never raises on bad input; the caller counts rejections and moves
on to the next feature.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from shapely.geometry import MultiPolygon

from georesolver.extraction.rules import (
    CITY_RULES,
    COUNTRY_RULES,
    FEATURE_ID,
    REGION_RULES,
    TIMEZONE_RULES,
    EntityRules,
    FieldRule,
    alpha2 as parse_alpha2,
    alpha3 as parse_alpha3,
)
from georesolver.normalizers import (
    composite_identifier,
    needs_transliteration,
    normalize_identifier,
    to_latin,
)
from georesolver.utils.geo import InvalidGeometryError, to_multipolygon


# Rejection reason categories
MISSING_CODE = "missing or invalid code"
MISSING_NAME = "missing name"
MISSING_IDENTIFIER = "missing identifier"
MISSING_TIMEZONE_ID = "missing or invalid timezone id"
INVALID_GEOMETRY = "invalid geometry"


@dataclass
class Rejection:
    """A feature the extractor could not turn into a record."""
    reason: str
    detail: str = ""
    feature_ref: str = ""

    def __str__(self) -> str:
        ref = f"[{self.feature_ref}] " if self.feature_ref else ""
        detail = f": {self.detail}" if self.detail else ""
        return f"{ref}{self.reason}{detail}"


@dataclass
class CountryRecord:
    iso_alpha2_code: Optional[str]
    iso_alpha3_code: Optional[str]
    name_latin: str
    geometry: MultiPolygon
    wikidata_id: Optional[str] = None
    keep_existing_name: bool = False

    @property
    def natural_key(self) -> str:
        return self.iso_alpha2_code or self.iso_alpha3_code


@dataclass
class RegionRecord:
    identifier: str
    name_latin: str
    country_iso_alpha2_code: Optional[str]
    country_iso_alpha3_code: Optional[str]
    geometry: MultiPolygon
    name_local: Optional[str] = None
    wikidata_id: Optional[str] = None
    keep_existing_name: bool = False

    @property
    def name_key(self) -> str:
        """Normalized Latin name, matched against free-text city region hints."""
        return normalize_identifier(self.name_latin)

    @property
    def natural_key(self) -> str:
        return f"{self.country_iso_alpha2_code or self.country_iso_alpha3_code}:{self.identifier}"


@dataclass
class CityRecord:
    identifier: str
    name_latin: str
    country_iso_alpha2_code: Optional[str]
    country_iso_alpha3_code: Optional[str]
    geometry: MultiPolygon
    name_local: Optional[str] = None
    region_identifier: Optional[str] = None
    wikidata_id: Optional[str] = None
    keep_existing_name: bool = False

    @property
    def natural_key(self) -> str:
        return f"{self.country_iso_alpha2_code or self.country_iso_alpha3_code}:{self.identifier}"


@dataclass
class TimezoneRecord:
    timezone_id: str
    geometry: MultiPolygon

    @property
    def natural_key(self) -> str:
        return self.timezone_id


Record = Union[CountryRecord, RegionRecord, CityRecord, TimezoneRecord]
ExtractionResult = Union[Record, Rejection]


class CodeLookup:
    """
    Alpha-2 <-> alpha-3 mapping scoped to a single ingestion run.

    Seeded from the countries already in the store and extended as the
    country phase upserts rows, so region and city features that carry only
    one code get the sibling filled in.
    """

    def __init__(self, pairs: Optional[list[tuple[Optional[str], Optional[str]]]] = None):
        self._a2_to_a3: dict[str, str] = {}
        self._a3_to_a2: dict[str, str] = {}
        for a2, a3 in pairs or []:
            self.add(a2, a3)

    def add(self, a2: Optional[str], a3: Optional[str]) -> None:
        if a2 and a3:
            self._a2_to_a3[a2] = a3
            self._a3_to_a2[a3] = a2

    def alpha3_for(self, a2: Optional[str]) -> Optional[str]:
        return self._a2_to_a3.get(a2) if a2 else None

    def alpha2_for(self, a3: Optional[str]) -> Optional[str]:
        return self._a3_to_a2.get(a3) if a3 else None

    def complete(self, a2: Optional[str], a3: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        """Fill whichever code is missing when the other one is known."""
        return a2 or self.alpha2_for(a3), a3 or self.alpha3_for(a2)

    def __len__(self) -> int:
        return len(self._a2_to_a3)


def first_match(feature: dict[str, Any], rules: tuple[FieldRule, ...]) -> Optional[str]:
    """Evaluate ``rules`` in order and return the first parsed value."""
    properties = feature.get("properties") or {}
    for rule in rules:
        if rule.alias == FEATURE_ID:
            raw = feature.get("id")
        else:
            raw = properties.get(rule.alias)
        if raw is None:
            continue
        value = rule.parser(raw)
        if value is not None:
            return value
    return None


def _feature_ref(feature: dict[str, Any]) -> str:
    properties = feature.get("properties") or {}
    for key in ("name", "NAME", "tzid", "ISO_A2", "iso_a2", "osm_id"):
        if properties.get(key):
            return str(properties[key])
    return str(feature.get("id") or "")


@dataclass
class CanonicalName:
    latin: str
    local: Optional[str]
    keep_existing: bool = False


def canonical_name(raw_name: str, local_name: Optional[str] = None) -> CanonicalName:
    """Pick the Latin display name for a raw source name.

    Names outside the canonical Latin set are transliterated; the original
    string is kept as the local name. When transliteration fails the raw name
    is used for inserts and ``keep_existing`` tells the store not to replace a
    name it already holds.
    """
    if not needs_transliteration(raw_name):
        return CanonicalName(raw_name, local_name)

    result = to_latin(raw_name)
    local = local_name or raw_name
    if result.ok:
        return CanonicalName(result.text, local)
    return CanonicalName(raw_name, local, keep_existing=True)


class FieldExtractor:
    """
    Maps raw features to canonical records using a source family's rule tables.

    Usage:
        extractor = FieldExtractor(lookup=CodeLookup([("DE", "DEU")]))
        result = extractor.extract_region(feature)
        if isinstance(result, Rejection):
            ...
    """

    def __init__(
        self,
        lookup: Optional[CodeLookup] = None,
        country_rules: EntityRules = COUNTRY_RULES,
        region_rules: EntityRules = REGION_RULES,
        city_rules: EntityRules = CITY_RULES,
        timezone_rules: EntityRules = TIMEZONE_RULES,
        default_country: Optional[str] = None,
        point_buffer: float = 0.0,
    ):
        self.lookup = lookup if lookup is not None else CodeLookup()
        self.country_rules = country_rules
        self.region_rules = region_rules
        self.city_rules = city_rules
        self.timezone_rules = timezone_rules
        self.default_country = default_country.upper() if default_country else None
        self.point_buffer = point_buffer

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    def _codes(self, feature: dict[str, Any], rules: EntityRules) -> tuple[Optional[str], Optional[str]]:
        a2 = first_match(feature, rules.alpha2)
        a3 = first_match(feature, rules.alpha3)
        if not a2 and not a3 and self.default_country:
            a2 = parse_alpha2(self.default_country)
            a3 = parse_alpha3(self.default_country)
        return a2, a3

    def _geometry(self, feature: dict[str, Any], point_buffer: float = 0.0) -> Union[MultiPolygon, Rejection]:
        try:
            return to_multipolygon(feature.get("geometry"), point_buffer=point_buffer)
        except InvalidGeometryError as e:
            return Rejection(INVALID_GEOMETRY, str(e), _feature_ref(feature))

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def extract_country(self, feature: dict[str, Any]) -> ExtractionResult:
        rules = self.country_rules
        a2, a3 = self._codes(feature, rules)
        if not a2 and not a3:
            return Rejection(MISSING_CODE, "no ISO 3166-1 alpha-2 or alpha-3 field", _feature_ref(feature))

        raw_name = first_match(feature, rules.name)
        if not raw_name:
            return Rejection(MISSING_NAME, feature_ref=a2 or a3)

        geometry = self._geometry(feature)
        if isinstance(geometry, Rejection):
            return geometry

        name = canonical_name(raw_name)
        return CountryRecord(
            iso_alpha2_code=a2,
            iso_alpha3_code=a3,
            name_latin=name.latin,
            geometry=geometry,
            wikidata_id=first_match(feature, rules.wikidata),
            keep_existing_name=name.keep_existing,
        )

    def extract_region(self, feature: dict[str, Any]) -> ExtractionResult:
        rules = self.region_rules
        a2, a3 = self.lookup.complete(*self._codes(feature, rules))
        if not a2 and not a3:
            return Rejection(MISSING_CODE, "no country code on region", _feature_ref(feature))

        raw_name = first_match(feature, rules.name)
        if not raw_name:
            return Rejection(MISSING_NAME, feature_ref=_feature_ref(feature))
        name = canonical_name(raw_name, first_match(feature, rules.name_local))

        identifier = normalize_identifier(first_match(feature, rules.identifier))
        if not identifier:
            identifier = composite_identifier(name.latin, a2 or a3)
        if not identifier:
            return Rejection(MISSING_IDENTIFIER, feature_ref=raw_name)

        geometry = self._geometry(feature)
        if isinstance(geometry, Rejection):
            return geometry

        return RegionRecord(
            identifier=identifier,
            name_latin=name.latin,
            name_local=name.local if name.local != name.latin else None,
            country_iso_alpha2_code=a2,
            country_iso_alpha3_code=a3,
            geometry=geometry,
            wikidata_id=first_match(feature, rules.wikidata),
            keep_existing_name=name.keep_existing,
        )

    def extract_city(self, feature: dict[str, Any]) -> ExtractionResult:
        rules = self.city_rules
        a2, a3 = self.lookup.complete(*self._codes(feature, rules))
        if not a2 and not a3:
            return Rejection(MISSING_CODE, "no country code on city", _feature_ref(feature))

        raw_name = first_match(feature, rules.name)
        if not raw_name:
            return Rejection(MISSING_NAME, feature_ref=_feature_ref(feature))
        name = canonical_name(raw_name, first_match(feature, rules.name_local))

        identifier = normalize_identifier(first_match(feature, rules.identifier))
        if not identifier:
            identifier = composite_identifier(name.latin, a2 or a3)
        if not identifier:
            return Rejection(MISSING_IDENTIFIER, feature_ref=raw_name)

        geometry = self._geometry(feature, point_buffer=self.point_buffer)
        if isinstance(geometry, Rejection):
            return geometry

        # Absent hints are resolved spatially after load
        # Non-Latin hints are compared in the same Latin form as region names
        raw_hint = first_match(feature, rules.region_hint)
        hint = normalize_identifier(canonical_name(raw_hint).latin if raw_hint else None) or None

        return CityRecord(
            identifier=identifier,
            name_latin=name.latin,
            name_local=name.local if name.local != name.latin else None,
            country_iso_alpha2_code=a2,
            country_iso_alpha3_code=a3,
            region_identifier=hint,
            geometry=geometry,
            wikidata_id=first_match(feature, rules.wikidata),
            keep_existing_name=name.keep_existing,
        )

    def extract_timezone(self, feature: dict[str, Any]) -> ExtractionResult:
        tzid = first_match(feature, self.timezone_rules.timezone)
        if not tzid:
            return Rejection(MISSING_TIMEZONE_ID, feature_ref=_feature_ref(feature))

        geometry = self._geometry(feature)
        if isinstance(geometry, Rejection):
            return geometry

        return TimezoneRecord(timezone_id=tzid, geometry=geometry)
