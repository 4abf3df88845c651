# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for GeoResolver tests."""

import os
import tempfile
from types import SimpleNamespace
from typing import Generator

import pytest

# Set test environment variables before importing the package
_TEST_ROOT = tempfile.mkdtemp(prefix="georesolver-tests-")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("DATA_RAW_DIR", os.path.join(_TEST_ROOT, "raw"))
os.environ.setdefault("CACHE_DIR", os.path.join(_TEST_ROOT, "cache"))
os.environ.setdefault("HTTP_MAX_RETRIES", "1")

from shapely.geometry import box, mapping  # noqa: E402


def square(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> dict:
    """GeoJSON polygon for a lon/lat box."""
    return mapping(box(min_lon, min_lat, max_lon, max_lat))


def point(lon: float, lat: float) -> dict:
    return {"type": "Point", "coordinates": [lon, lat]}


def feature(properties: dict, geometry: dict | None = None, feature_id=None) -> dict:
    data = {"type": "Feature", "properties": properties, "geometry": geometry}
    if feature_id is not None:
        data["id"] = feature_id
    return data


def collection(*features: dict) -> dict:
    return {"type": "FeatureCollection", "features": list(features)}


@pytest.fixture
def geo() -> SimpleNamespace:
    """GeoJSON builders: square, point, feature, collection."""
    return SimpleNamespace(square=square, point=point, feature=feature, collection=collection)


@pytest.fixture
def memory_store():
    """Empty in-memory reference store."""
    from georesolver.store import MemoryStore
    return MemoryStore()


@pytest.fixture
def code_lookup():
    """Run-scoped code lookup seeded with a few countries."""
    from georesolver.extraction import CodeLookup
    return CodeLookup([("DE", "DEU"), ("FR", "FRA"), ("UA", "UKR"), ("RU", "RUS")])


@pytest.fixture
def europe_collections() -> dict:
    """
    Small synthetic world: France and Ukraine side by side, one region each.

    France covers lon 0..10, Ukraine lon 20..30, both lat 40..50.
    """
    countries = collection(
        feature({"ISO_A2": "FR", "ISO_A3": "FRA", "NAME": "France", "WIKIDATAID": "Q142"}, square(0, 40, 10, 50)),
        feature({"ISO_A2": "UA", "ISO_A3": "UKR", "NAME": "Ukraine"}, square(20, 40, 30, 50)),
    )
    regions = collection(
        feature(
            {"iso_3166_2": "FR-IDF", "name": "Ile-de-France", "iso_a2": "FR", "adm0_a3": "FRA"},
            square(0, 40, 10, 50),
        ),
        feature(
            {"iso_3166_2": "UA-30", "name": "Київ", "iso_a2": "UA", "adm0_a3": "UKR"},
            square(20, 45, 30, 50),
        ),
    )
    cities = collection(
        feature({"NAME": "Paris", "ADM0_A3": "FRA", "GEONAMEID": 2988507}, point(5, 45)),
        feature({"NAME": "Odesa", "ADM0_A3": "UKR", "GEONAMEID": 698740}, point(25, 42)),
        feature({"NAME": "Nowhere", "GEONAMEID": 1}, point(60, 60)),
    )
    timezones = collection(
        feature({"tzid": "Europe/Paris"}, square(0, 40, 10, 50)),
        feature({"tzid": "Europe/Kyiv"}, square(20, 40, 30, 50)),
    )
    return {"countries": countries, "regions": regions, "cities": cities, "timezones": timezones}


@pytest.fixture
def test_client(memory_store) -> Generator:
    """FastAPI test client whose lookups run against the in-memory store."""
    from fastapi.testclient import TestClient

    from api.main import app
    from api.routes.location import get_lookup_service
    from georesolver.lookup import GeoLookupService

    app.dependency_overrides[get_lookup_service] = lambda: GeoLookupService(memory_store)
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
