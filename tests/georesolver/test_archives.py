# SPDX-License-Identifier: MIT
"""Tests for archive extraction and GeoJSON loading."""

import json
import subprocess
import zipfile

import pytest

from georesolver.sources import ConversionError, load_feature_collection
from georesolver.sources.archives import convert_shapefile, find_member, is_zip, read_geojson


@pytest.fixture
def shapefile(tmp_path):
    shp = tmp_path / "ne_admin_0.shp"
    shp.write_bytes(b"\x00\x00\x27\x0a")
    return shp


class TestConvertShapefile:
    def test_runs_ogr2ogr(self, mocker, shapefile):
        def fake_run(cmd, **kwargs):
            shapefile.with_suffix(".geojson").write_text("{}")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        run = mocker.patch("georesolver.sources.archives.subprocess.run", side_effect=fake_run)

        out = convert_shapefile(shapefile, where="featurecla = 'Admin-0 country'")

        cmd = run.call_args.args[0]
        assert cmd[:4] == ["ogr2ogr", "-f", "GeoJSON", str(out)]
        assert "RFC7946=YES" in cmd
        assert cmd[-2:] == ["-where", "featurecla = 'Admin-0 country'"]
        assert out == shapefile.with_suffix(".geojson")

    def test_missing_binary(self, mocker, shapefile):
        mocker.patch("georesolver.sources.archives.subprocess.run", side_effect=FileNotFoundError("ogr2ogr"))
        with pytest.raises(ConversionError, match="ogr2ogr not found"):
            convert_shapefile(shapefile)

    def test_non_zero_exit(self, mocker, shapefile):
        error = subprocess.CalledProcessError(1, ["ogr2ogr"], stderr="ERROR 1: unable to open")
        mocker.patch("georesolver.sources.archives.subprocess.run", side_effect=error)
        with pytest.raises(ConversionError, match="unable to open"):
            convert_shapefile(shapefile)

    def test_no_output(self, mocker, shapefile):
        mocker.patch("georesolver.sources.archives.subprocess.run")
        with pytest.raises(ConversionError, match="no output"):
            convert_shapefile(shapefile)


class TestReadGeoJSON:
    def test_single_feature_wrapped(self, tmp_path, geo):
        path = tmp_path / "one.geojson"
        path.write_text(json.dumps(geo.feature({"NAME": "x"}, geo.point(1, 2))))
        data = read_geojson(path)
        assert data["type"] == "FeatureCollection"
        assert len(data["features"]) == 1

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.geojson"
        path.write_text("{not json")
        with pytest.raises(ConversionError, match="not valid JSON"):
            read_geojson(path)

    def test_not_a_collection(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConversionError):
            read_geojson(path)

    def test_binary_payload(self, tmp_path):
        path = tmp_path / "regions.geojson"
        path.write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(ConversionError, match="not valid JSON"):
            read_geojson(path)


class TestLoadFeatureCollection:
    def test_plain_geojson(self, tmp_path, geo):
        path = tmp_path / "tz.json"
        path.write_text(json.dumps(geo.collection(geo.feature({"tzid": "UTC"}, geo.square(0, 0, 1, 1)))))
        assert not is_zip(path)
        assert load_feature_collection(path)["features"][0]["properties"]["tzid"] == "UTC"

    def test_zipped_geojson(self, tmp_path, geo):
        archive = tmp_path / "timezones.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("dist/README.txt", "hello")
            zf.writestr("dist/combined.json", json.dumps(geo.collection()))

        assert is_zip(archive)
        data = load_feature_collection(archive)
        assert data == {"type": "FeatureCollection", "features": []}
        assert (tmp_path / "timezones" / "dist" / "combined.json").exists()

    def test_zip_without_dataset(self, tmp_path):
        archive = tmp_path / "empty.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("README.txt", "nothing here")
        with pytest.raises(ConversionError, match="No shapefile or GeoJSON"):
            load_feature_collection(archive)

    def test_truncated_zip(self, tmp_path, geo):
        archive = tmp_path / "cities.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("ne_places.geojson", json.dumps(geo.collection()))
        archive.write_bytes(archive.read_bytes()[:20])

        assert is_zip(archive)
        with pytest.raises(ConversionError, match="not a readable zip archive"):
            load_feature_collection(archive)

    def test_zipped_shapefile_is_converted(self, mocker, tmp_path):
        archive = tmp_path / "places.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("gis_osm_places_free_1.shp", b"shp")
            zf.writestr("gis_osm_roads_free_1.shp", b"shp")

        def fake_run(cmd, **kwargs):
            with open(cmd[3], "w") as f:
                json.dump({"type": "FeatureCollection", "features": []}, f)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        run = mocker.patch("georesolver.sources.archives.subprocess.run", side_effect=fake_run)

        load_feature_collection(archive, member="gis_osm_places_free_1.shp")

        assert run.call_args.args[0][4].endswith("gis_osm_places_free_1.shp")


class TestFindMember:
    def test_prefers_shapefile(self, tmp_path):
        (tmp_path / "a.geojson").write_text("{}")
        (tmp_path / "b.shp").write_bytes(b"")
        assert find_member(tmp_path).name == "b.shp"

    def test_named_member_missing(self, tmp_path):
        (tmp_path / "b.shp").write_bytes(b"")
        assert find_member(tmp_path, "gis_osm_places_free_1.shp") is None
