# SPDX-License-Identifier: MIT
"""Tests for the phase ingesters."""

import json

import pytest
from shapely.geometry import MultiPolygon, box

from georesolver.extraction import CodeLookup, CountryRecord
from georesolver.ingesters import CityIngester, CountryIngester, RegionIngester, TimezoneIngester
from georesolver.sources import ConversionError, FetchedSource, SourceUnavailableError
from georesolver.sources.geofabrik import GeofabrikPathResolver


def fetched(tmp_path, dataset: str, data: dict) -> FetchedSource:
    path = tmp_path / f"{dataset}.geojson"
    path.write_text(json.dumps(data), encoding="utf-8")
    return FetchedSource(dataset, f"https://example.test/{dataset}.geojson", path, path.stat().st_size)


class TestCountryIngester:
    def test_loads_and_extends_lookup(self, tmp_path, memory_store, europe_collections):
        lookup = CodeLookup()
        source = fetched(tmp_path, "countries", europe_collections["countries"])

        stats = CountryIngester(memory_store, lookup, source=source).run()

        assert stats.status == "loaded"
        assert stats.processed == 2
        assert lookup.alpha3_for("UA") == "UKR"

    def test_mandatory_unavailable(self, memory_store):
        error = SourceUnavailableError("countries", [("https://a.test", "empty body")])
        stats = CountryIngester(memory_store, source=error).run()
        assert stats.status == "failed"
        assert not stats.success

    def test_unconvertible_payload(self, tmp_path, memory_store):
        path = tmp_path / "countries.geojson"
        path.write_text("<html>mirror maintenance</html>")
        source = FetchedSource("countries", "https://a.test/countries.geojson", path, 31)

        stats = CountryIngester(memory_store, source=source).run()

        assert stats.status == "failed"
        assert "not valid JSON" in stats.errors[0]

    def test_skip_fetch_uses_newest_raw_file(self, mocker, tmp_path, memory_store, europe_collections):
        raw = tmp_path / "countries"
        raw.mkdir()
        (raw / "countries.geojson").write_text(json.dumps(europe_collections["countries"]))
        ingester = CountryIngester(memory_store, skip_fetch=True)
        ingester.raw_data_dir = raw
        fetch = mocker.patch("georesolver.ingesters.base.fetch_first_available")

        assert ingester.run().processed == 2
        fetch.assert_not_called()

    def test_skip_fetch_without_raw_data(self, tmp_path, memory_store):
        ingester = CountryIngester(memory_store, skip_fetch=True)
        ingester.raw_data_dir = tmp_path / "missing"
        stats = ingester.run()
        assert stats.status == "failed"
        assert "no raw data files" in stats.errors[0]


class TestOptionalPhases:
    def test_unavailable_is_skipped(self, memory_store):
        stats = TimezoneIngester(memory_store, source=SourceUnavailableError("timezones", [])).run()
        assert stats.status == "skipped"
        assert stats.success

    @pytest.mark.parametrize("payload, filename", [
        (b"\xff\xd8\xff\xe0 jpeg bytes", "timezones.json"),
        (b"PK\x03\x04 truncated download", "timezones.zip"),
    ])
    def test_corrupt_payload_is_skipped(self, tmp_path, memory_store, payload, filename):
        path = tmp_path / filename
        path.write_bytes(payload)
        source = FetchedSource("timezones", f"https://example.test/{filename}", path, len(payload))

        stats = TimezoneIngester(memory_store, source=source).run()

        assert stats.status == "skipped"
        assert stats.success
        assert memory_store.rows("timezones") == []

    def test_region_country_filter(self, tmp_path, memory_store, code_lookup, europe_collections):
        source = fetched(tmp_path, "regions", europe_collections["regions"])

        stats = RegionIngester(memory_store, code_lookup, source=source, countries=["FR"]).run()

        assert [r["identifier"] for r in memory_store.rows("regions")] == ["FRIDF"]
        assert stats.features_seen == 1


class TestCityIngester:
    @pytest.fixture
    def osm_places(self, mocker, geo):
        places = [
            geo.feature({"osm_id": "123", "name": "Valletta", "fclass": "city"}, geo.square(14.50, 35.89, 14.52, 35.90)),
            geo.feature({"osm_id": "456", "fclass": "town"}, geo.square(14.40, 35.90, 14.42, 35.91)),
        ]
        return mocker.patch("georesolver.ingesters.cities.load_country_places", return_value=places)

    def test_natural_earth_points_buffered(self, tmp_path, memory_store, code_lookup, europe_collections):
        source = fetched(tmp_path, "cities", europe_collections["cities"])

        CityIngester(memory_store, code_lookup, source=source, use_osm=False).run()

        paris = memory_store.rows("cities")[0]
        assert paris["country_iso_alpha2_code"] == "FR"
        assert paris["geometry"].geom_type == "MultiPolygon"
        assert paris["geometry"].contains(paris["geometry"].centroid)

    def test_osm_places_merged(self, tmp_path, memory_store, code_lookup, europe_collections, osm_places):
        source = fetched(tmp_path, "cities", europe_collections["cities"])

        stats = CityIngester(memory_store, code_lookup, source=source, use_osm=True, osm_countries=["MT"]).run()

        valletta = next(r for r in memory_store.rows("cities") if r["identifier"] == "OSM123")
        assert valletta["country_iso_alpha2_code"] == "MT"
        assert stats.skip_reasons["missing name"] == 1
        osm_places.assert_called_once()

    def test_osm_only_when_natural_earth_unavailable(self, memory_store, osm_places):
        ingester = CityIngester(
            memory_store,
            source=SourceUnavailableError("cities", []),
            use_osm=True,
            osm_countries=["MT"],
        )
        stats = ingester.run()
        assert stats.status == "loaded"
        assert stats.processed == 1

    def test_osm_failure_falls_back(self, tmp_path, memory_store, code_lookup, europe_collections, mocker):
        mocker.patch(
            "georesolver.ingesters.cities.load_country_places",
            side_effect=ConversionError("All Geofabrik extracts failed for MT"),
        )
        source = fetched(tmp_path, "cities", europe_collections["cities"])

        stats = CityIngester(memory_store, code_lookup, source=source, use_osm=True, osm_countries=["MT"]).run()

        assert stats.status == "loaded"
        assert stats.processed == 2

    def test_default_osm_countries(self, memory_store):
        with memory_store.transaction():
            for a2, a3 in (("FR", "FRA"), ("ZZ", "ZZZ"), (None, "XKX")):
                memory_store.upsert_country(CountryRecord(a2, a3, a3, MultiPolygon([box(0, 0, 1, 1)])))
        resolver = GeofabrikPathResolver(paths={"FR": "europe/france", "DE": "europe/germany"}, multi_paths={})

        ingester = CityIngester(memory_store, use_osm=True, osm_countries=[], resolver=resolver)

        assert ingester.selected_osm_countries() == ["FR"]
