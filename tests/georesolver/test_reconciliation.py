# SPDX-License-Identifier: MIT
"""Tests for staged spatial reconciliation against the in-memory store."""

import pytest
from shapely.geometry import MultiPolygon, Point, box

from georesolver.extraction import CityRecord, CountryRecord, RegionRecord
from georesolver.reconciliation import (
    CODELESS_CITY,
    HIERARCHY_VIOLATION,
    REGION_WITHOUT_COUNTRY,
    SpatialReconciler,
)


def area(min_lon, min_lat, max_lon, max_lat) -> MultiPolygon:
    return MultiPolygon([box(min_lon, min_lat, max_lon, max_lat)])


def dot(lon, lat, radius=0.01) -> MultiPolygon:
    return MultiPolygon([Point(lon, lat).buffer(radius)])


@pytest.fixture
def store(memory_store):
    """France (lon 0..10) with regions R1 (lat 40..45) and R2 (lat 45..50); Ukraine with one northern region."""
    with memory_store.transaction():
        memory_store.upsert_country(CountryRecord("FR", "FRA", "France", area(0, 40, 10, 50)))
        memory_store.upsert_country(CountryRecord("UA", "UKR", "Ukraine", area(20, 40, 30, 50)))
        memory_store.upsert_region(RegionRecord("FRR1", "Region One", "FR", "FRA", area(0, 40, 10, 45)))
        memory_store.upsert_region(RegionRecord("FRR2", "Region Two", "FR", "FRA", area(0, 45, 10, 50)))
        memory_store.upsert_region(RegionRecord("UA30", "Kyiv", "UA", "UKR", area(20, 45, 30, 50)))
    return memory_store


def add_city(store, identifier, geometry, a2="FR", a3="FRA", region=None):
    with store.transaction():
        store.upsert_city(CityRecord(identifier, identifier, a2, a3, geometry, region_identifier=region))


def city(store, identifier):
    return next((c for c in store.rows("cities") if c["identifier"] == identifier), None)


class TestStagedAssignment:
    def test_scenario_b(self, store):
        """A city inside R1 without a region field is assigned R1 by centroid."""
        add_city(store, "Paris", dot(5, 42))
        result = SpatialReconciler(store).run()
        assert city(store, "Paris")["region_identifier"] == "FRR1"
        assert result.assigned_by_centroid == 1

    def test_lowest_region_id_wins(self, store):
        """A city whose centroid lies on the shared border goes to the first region."""
        add_city(store, "Border", MultiPolygon([box(4, 44, 6, 46)]))
        SpatialReconciler(store).run()
        assert city(store, "Border")["region_identifier"] == "FRR1"

    def test_intersection_stage(self, store):
        """A city straddling the country edge is caught by intersection when its centroid is outside."""
        add_city(store, "Coastal", MultiPolygon([box(9.9, 41, 12, 42)]))
        result = SpatialReconciler(store).run()
        assert city(store, "Coastal")["region_identifier"] == "FRR1"
        assert result.assigned_by_intersection == 1
        assert result.assigned_by_centroid == 0

    def test_every_assignment_satisfies_containment(self, store):
        for i, (lon, lat) in enumerate([(1, 41), (9, 49), (5, 45.5), (25, 47)]):
            a2, a3 = ("UA", "UKR") if lon > 20 else ("FR", "FRA")
            add_city(store, f"C{i}", dot(lon, lat), a2, a3)
        SpatialReconciler(store).run()

        regions = {r["identifier"]: r for r in store.rows("regions")}
        for row in store.rows("cities"):
            region = regions[row["region_identifier"]]
            assert region["geometry"].intersects(row["geometry"])


class TestHints:
    def test_valid_hint_is_kept(self, store):
        add_city(store, "Lyon", dot(5, 42), region="FRR1")
        result = SpatialReconciler(store).run()
        assert city(store, "Lyon")["region_identifier"] == "FRR1"
        assert result.hints_changed == 0

    def test_hint_by_region_name(self, store):
        add_city(store, "Lille", dot(5, 48), region="RegionTwo")
        SpatialReconciler(store).run()
        assert city(store, "Lille")["region_identifier"] == "FRR2"

    def test_wrong_hint_is_cleared_and_resolved(self, store):
        """A hint naming a region the city is not in is replaced by the spatial match."""
        add_city(store, "Nice", dot(5, 42), region="FRR2")
        result = SpatialReconciler(store).run()
        assert city(store, "Nice")["region_identifier"] == "FRR1"
        assert result.hints_changed == 1

    def test_unknown_hint_is_cleared(self, store):
        add_city(store, "Brest", dot(1, 41), region="Bretagne")
        SpatialReconciler(store).run()
        assert city(store, "Brest")["region_identifier"] == "FRR1"


class TestCleanup:
    def test_scenario_c(self, store):
        """A UA city outside every UA region is deleted as a hierarchy violation."""
        add_city(store, "Odesa", dot(25, 42), "UA", "UKR")
        result = SpatialReconciler(store).run()
        assert city(store, "Odesa") is None
        assert result.removals[HIERARCHY_VIOLATION] == 1
        assert result.unassigned_removed == 1

    def test_cross_country_violation(self, store):
        """A city whose region belongs to another country is deleted."""
        with store.transaction():
            store.upsert_city(CityRecord("Mixed", "Mixed", "FR", "UKR", dot(25, 47)))
        with store.transaction():
            store.assign_regions("centroid")
        assert city(store, "Mixed")["region_identifier"] == "UA30"

        result = SpatialReconciler(store).run()
        assert city(store, "Mixed") is None
        assert result.cross_country_removed == 1
        assert result.removals[HIERARCHY_VIOLATION] == 1

    def test_codeless_city_is_exempt_but_flagged(self, store):
        add_city(store, "Stateless", dot(60, 60), None, None)
        result = SpatialReconciler(store).run()
        assert city(store, "Stateless") is not None
        assert result.flags[CODELESS_CITY] == 1

    def test_unassigned_kept_when_regions_missing(self, store):
        add_city(store, "Odesa", dot(25, 42), "UA", "UKR")
        result = SpatialReconciler(store, remove_unassigned=False).run()
        assert city(store, "Odesa") is not None
        assert result.unassigned_removed == 0

    def test_region_without_country_flagged(self, store):
        with store.transaction():
            store.upsert_region(RegionRecord("ZZ1", "Nowhere", "ZZ", "ZZZ", area(50, 50, 51, 51)))
        result = SpatialReconciler(store).run()
        assert result.flags[REGION_WITHOUT_COUNTRY] == 1


class TestIdempotence:
    def test_second_pass_changes_nothing(self, store):
        add_city(store, "Paris", dot(5, 42))
        add_city(store, "Lille", dot(5, 48), region="RegionTwo")
        add_city(store, "Coastal", MultiPolygon([box(9.9, 41, 12, 42)]))
        add_city(store, "Odesa", dot(25, 42), "UA", "UKR")
        add_city(store, "Kyiv", dot(25, 48), "UA", "UKR")

        first = SpatialReconciler(store).run()
        assert first.mutations > 0
        rows = [(c["identifier"], c["region_identifier"]) for c in store.rows("cities")]

        second = SpatialReconciler(store).run()
        assert second.mutations == 0
        assert [(c["identifier"], c["region_identifier"]) for c in store.rows("cities")] == rows


class TestStepFailures:
    def test_failed_step_is_recorded_and_others_run(self, store, mocker):
        add_city(store, "Paris", dot(5, 42))
        mocker.patch.object(store, "resolve_region_hints", side_effect=TimeoutError("statement timeout"))

        result = SpatialReconciler(store).run()

        assert "hints" in result.stage_errors
        assert not result.complete
        assert city(store, "Paris")["region_identifier"] == "FRR1"
