"""
Field extraction for heterogeneous geographic datasets.

The rule tables in :mod:`georesolver.extraction.rules` describe where each
source family keeps codes, names and ids; :class:`FieldExtractor` applies them
feature by feature.
"""

from georesolver.extraction.fields import (
    INVALID_GEOMETRY,
    MISSING_CODE,
    MISSING_IDENTIFIER,
    MISSING_NAME,
    MISSING_TIMEZONE_ID,
    CityRecord,
    CodeLookup,
    CountryRecord,
    FieldExtractor,
    Record,
    RegionRecord,
    Rejection,
    TimezoneRecord,
    canonical_name,
    first_match,
)
from georesolver.extraction.rules import (
    CITY_RULES,
    COUNTRY_RULES,
    OSM_CITY_RULES,
    REGION_RULES,
    TIMEZONE_RULES,
    EntityRules,
    FieldRule,
)

__all__ = [
    "FieldExtractor",
    "CodeLookup",
    "Rejection",
    "Record",
    "CountryRecord",
    "RegionRecord",
    "CityRecord",
    "TimezoneRecord",
    "canonical_name",
    "first_match",
    "EntityRules",
    "FieldRule",
    "COUNTRY_RULES",
    "REGION_RULES",
    "CITY_RULES",
    "OSM_CITY_RULES",
    "TIMEZONE_RULES",
    "MISSING_CODE",
    "MISSING_NAME",
    "MISSING_IDENTIFIER",
    "MISSING_TIMEZONE_ID",
    "INVALID_GEOMETRY",
]
