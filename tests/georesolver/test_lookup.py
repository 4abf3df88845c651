# SPDX-License-Identifier: MIT
"""Tests for point lookups."""

from datetime import datetime, timezone

import pytest
from shapely.geometry import MultiPolygon, box

from georesolver.extraction import CityRecord, CountryRecord, RegionRecord, TimezoneRecord
from georesolver.lookup import (
    OFFSET_FROM_LONGITUDE,
    OFFSET_FROM_TIMEZONE,
    GeoLookupService,
    zone_offsets,
)
from georesolver.utils.geo import approximate_utc_offset


SUMMER = datetime(2024, 7, 1, 12, tzinfo=timezone.utc)
WINTER = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)


def shape(*bounds) -> MultiPolygon:
    return MultiPolygon([box(*bounds)])


@pytest.fixture
def service(memory_store):
    with memory_store.transaction():
        memory_store.upsert_country(CountryRecord("FR", "FRA", "France", shape(0, 40, 10, 50)))
        memory_store.upsert_country(CountryRecord("UA", "UKR", "Ukraine", shape(20, 40, 30, 50)))
        memory_store.upsert_region(RegionRecord("FRIDF", "Ile-de-France", "FR", "FRA", shape(0, 45, 10, 50)))
        memory_store.upsert_city(CityRecord("GN2988507", "Paris", "FR", "FRA", shape(1, 47, 3, 49),
                                            region_identifier="FRIDF"))
        memory_store.upsert_timezone(TimezoneRecord("Europe/Paris", shape(0, 40, 10, 50)))
        memory_store.upsert_timezone(TimezoneRecord("Mars/Olympus", shape(20, 45, 30, 50)))
    memory_store.set_watermark(datetime(2024, 6, 1, tzinfo=timezone.utc))
    return GeoLookupService(memory_store)


class TestLookup:
    def test_full_hierarchy(self, service):
        result = service.lookup(48.0, 2.0, at=SUMMER)

        assert result.country_iso_alpha2_code == "FR"
        assert result.country_iso_alpha3_code == "FRA"
        assert result.region_identifier == "FRIDF"
        assert result.city_identifier == "GN2988507"
        assert result.city_name_latin == "Paris"
        assert result.timezone_id == "Europe/Paris"
        assert result.timezone_raw_offset_seconds == 3600
        assert result.timezone_dst_offset_seconds == 3600
        assert result.timezone_total_offset_seconds == 7200
        assert result.offset_source == OFFSET_FROM_TIMEZONE

    def test_partial_hierarchy(self, service):
        """Country only: region and city stay empty."""
        result = service.lookup(42.0, 5.0, at=WINTER)
        assert result.country_name_latin == "France"
        assert result.region_identifier is None
        assert result.city_identifier is None
        assert result.timezone_dst_offset_seconds == 0

    def test_longitude_fallback_without_zone(self, service):
        result = service.lookup(42.0, 25.0)
        assert result.country_iso_alpha2_code == "UA"
        assert result.timezone_id is None
        assert result.timezone_raw_offset_seconds == 2 * 3600
        assert result.offset_source == OFFSET_FROM_LONGITUDE

    def test_longitude_fallback_unknown_zone(self, service):
        result = service.lookup(47.0, 25.0)
        assert result.timezone_id == "Mars/Olympus"
        assert result.offset_source == OFFSET_FROM_LONGITUDE

    def test_outside_every_country(self, service):
        assert service.lookup(0.0, -150.0) is None

    @pytest.mark.parametrize("lat,lon", [(91, 0), (-90.5, 0), (0, 180.1), (0, -181)])
    def test_invalid_coordinates(self, service, lat, lon):
        with pytest.raises(ValueError):
            service.lookup(lat, lon)

    def test_to_dict(self, service):
        data = service.lookup(48.0, 2.0, at=SUMMER).to_dict()
        assert data["timezone_total_offset_seconds"] == 7200
        assert data["data_updated_at"] == "2024-06-01T00:00:00+00:00"
        assert "geometry" not in data


class TestOffsets:
    def test_zone_offsets(self):
        assert zone_offsets("Europe/Kyiv", SUMMER) == (7200, 3600)
        assert zone_offsets("Asia/Kolkata", WINTER) == (19800, 0)

    def test_unknown_zone(self):
        assert zone_offsets("Nowhere/Special", SUMMER) is None

    @pytest.mark.parametrize("lon,hours", [(0, 0), (37.6, 3), (-74.0, -5), (179.9, 12), (-179.9, -12)])
    def test_approximate_utc_offset(self, lon, hours):
        assert approximate_utc_offset(lon) == hours
