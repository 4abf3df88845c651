# SPDX-License-Identifier: MIT
"""
Round trip against a real PostGIS database.

Skipped unless GEORESOLVER_TEST_DATABASE_URL points at a disposable database;
the tables in it are dropped and recreated.
"""

import os

import pytest
from shapely.geometry import MultiPolygon, box
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from georesolver.database import create_all_tables, drop_all_tables
from georesolver.extraction import CityRecord, CountryRecord, RegionRecord
from georesolver.lock import LockNotAcquiredError, NamedLock
from georesolver.reconciliation import SpatialReconciler
from georesolver.store.postgis import PostGISStore
from georesolver.upsert import PhaseStats, UpsertEngine


DATABASE_URL = os.environ.get("GEORESOLVER_TEST_DATABASE_URL")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not DATABASE_URL, reason="GEORESOLVER_TEST_DATABASE_URL not set"),
]


def shape(*bounds) -> MultiPolygon:
    return MultiPolygon([box(*bounds)])


@pytest.fixture
def store():
    engine = create_engine(DATABASE_URL)
    drop_all_tables(bind=engine)
    create_all_tables(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with PostGISStore(session_factory=factory) as store:
        yield store
    engine.dispose()


class TestPostGISRoundTrip:
    def test_merge_and_reconcile(self, store):
        engine = UpsertEngine(store)

        countries = engine.apply_all([
            CountryRecord("DE", "DEU", "Germany", shape(5, 47, 15, 55)),
            CountryRecord(None, "FRA", "France", shape(-5, 42, 5, 51)),
            # collides on FRA: merged into the alpha-3 row, which gains its alpha-2
            CountryRecord("FR", "FRA", "France", shape(-5, 42, 5, 51), wikidata_id="Q142"),
        ], PhaseStats("countries"))
        assert countries.processed == 3
        assert countries.fallback_updates == 1
        assert store.entity_counts()["countries"] == 2

        engine.apply_all([
            RegionRecord("DEBY", "Bayern", "DE", "DEU", shape(9, 47, 13, 50)),
        ], PhaseStats("regions"))
        engine.apply_all([
            CityRecord("GN1", "Munich", "DE", "DEU", shape(11.4, 48.0, 11.8, 48.3)),
            CityRecord("GN2", "Hamburg", "DE", "DEU", shape(9.9, 53.5, 10.1, 53.6)),
        ], PhaseStats("cities"))

        result = SpatialReconciler(store).run()

        assert result.complete
        assert result.assigned_by_centroid == 1
        assert result.unassigned_removed == 1
        assert store.find_containing("cities", 11.6, 48.1)["region_identifier"] == "DEBY"

    def test_lock_is_exclusive(self, store):
        with NamedLock(store, name="test", holder="a"):
            with pytest.raises(LockNotAcquiredError):
                NamedLock(store, name="test", holder="b").acquire()
        assert store.lock_holder("test") is None
