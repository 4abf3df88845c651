"""
Per-entity merge policies.

An incoming record either inserts a new row or merges into the row sharing
its natural key. Columns listed in ``overwrite`` take the incoming value
unconditionally (geometry and canonical name are authoritative per run);
columns in ``fill_missing`` take the incoming value only when it is non-null,
so a source that lacks a field never erases what another source supplied.
"""

from dataclasses import dataclass, fields
from typing import Any

from georesolver.extraction import CityRecord, CountryRecord, Record, RegionRecord, TimezoneRecord


NAME_COLUMNS = ("name_latin", "name_key")


@dataclass(frozen=True)
class MergePolicy:
    table: str
    key_columns: tuple[str, ...]
    overwrite: tuple[str, ...]
    fill_missing: tuple[str, ...]

    def overwrite_columns(self, keep_existing_name: bool = False) -> tuple[str, ...]:
        """Columns replaced on merge; the name is held back when it failed transliteration."""
        if not keep_existing_name:
            return self.overwrite
        return tuple(c for c in self.overwrite if c not in NAME_COLUMNS)


COUNTRY_POLICY = MergePolicy(
    table="countries",
    key_columns=("iso_alpha2_code", "iso_alpha3_code"),
    overwrite=("name_latin", "geometry"),
    fill_missing=("iso_alpha2_code", "iso_alpha3_code", "wikidata_id"),
)

REGION_POLICY = MergePolicy(
    table="regions",
    key_columns=("identifier", "country_iso_alpha2_code", "country_iso_alpha3_code"),
    overwrite=("name_latin", "name_key", "geometry"),
    fill_missing=("country_iso_alpha2_code", "country_iso_alpha3_code", "name_local", "wikidata_id"),
)

CITY_POLICY = MergePolicy(
    table="cities",
    key_columns=("identifier", "country_iso_alpha2_code", "country_iso_alpha3_code"),
    overwrite=("name_latin", "geometry"),
    fill_missing=(
        "country_iso_alpha2_code",
        "country_iso_alpha3_code",
        "name_local",
        "region_identifier",
        "wikidata_id",
    ),
)

TIMEZONE_POLICY = MergePolicy(
    table="timezones",
    key_columns=("timezone_id",),
    overwrite=("geometry",),
    fill_missing=(),
)

POLICIES = {
    CountryRecord: COUNTRY_POLICY,
    RegionRecord: REGION_POLICY,
    CityRecord: CITY_POLICY,
    TimezoneRecord: TIMEZONE_POLICY,
}


def policy_for(record: Record) -> MergePolicy:
    return POLICIES[type(record)]


def record_values(record: Record) -> dict[str, Any]:
    """Column values of a record, geometry left as a shapely object."""
    values = {f.name: getattr(record, f.name) for f in fields(record) if f.name != "keep_existing_name"}
    if isinstance(record, RegionRecord):
        values["name_key"] = record.name_key
    return values


def merge_fields(
    policy: MergePolicy,
    stored: dict[str, Any],
    incoming: dict[str, Any],
    keep_existing_name: bool = False,
) -> dict[str, Any]:
    """Apply the fill-missing, never-erase merge of ``incoming`` onto ``stored``."""
    merged = dict(stored)
    for column in policy.overwrite_columns(keep_existing_name):
        merged[column] = incoming.get(column)
    for column in policy.fill_missing:
        if incoming.get(column) is not None:
            merged[column] = incoming[column]
    return merged
