"""
In-process reference store.

Implements the same contract as the PostGIS store with shapely predicates and
plain dictionaries. Used for ``update --dry-run`` (validate a source pack and
report counters without a database) and by the test-suite.

Savepoints and transactions are emulated with an undo journal: every mutation
records how to revert itself, and rolling back replays the journal down to
the mark taken when the unit started.
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from shapely.geometry import Point

from georesolver.database import REFERENCE_TABLES
from georesolver.extraction import CityRecord, CountryRecord, RegionRecord, TimezoneRecord
from georesolver.store.base import (
    BOUNDARY_INTERSECTION,
    CENTROID_CONTAINMENT,
    CodeConflictError,
    ReferenceStore,
)
from georesolver.store.merge import (
    CITY_POLICY,
    COUNTRY_POLICY,
    REGION_POLICY,
    TIMEZONE_POLICY,
    MergePolicy,
    merge_fields,
    record_values,
)


Row = dict[str, Any]


def _same_country(city: Row, region: Row) -> bool:
    a2 = city.get("country_iso_alpha2_code")
    a3 = city.get("country_iso_alpha3_code")
    return bool(
        (a2 and region.get("country_iso_alpha2_code") == a2)
        or (a3 and region.get("country_iso_alpha3_code") == a3)
    )


def _codes_conflict(city: Row, region: Row) -> bool:
    for column in ("country_iso_alpha2_code", "country_iso_alpha3_code"):
        if city.get(column) and region.get(column) and city[column] != region[column]:
            return True
    return False


class MemoryStore(ReferenceStore):
    """Shapely-backed reference store living entirely in memory."""

    TABLES = REFERENCE_TABLES

    def __init__(self):
        self.tables: dict[str, dict[int, Row]] = {name: {} for name in self.TABLES}
        self._next_id: dict[str, int] = {name: 1 for name in self.TABLES}
        self._journal: list[Callable[[], None]] = []
        self._depth = 0
        self.watermark: Optional[datetime] = None
        self.locks: dict[str, Row] = {}

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    def _record(self, undo: Callable[[], None]) -> None:
        if self._depth:
            self._journal.append(undo)

    def _rollback_to(self, mark: int) -> None:
        while len(self._journal) > mark:
            self._journal.pop()()

    @contextmanager
    def _unit(self) -> Iterator["MemoryStore"]:
        mark = len(self._journal)
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._rollback_to(mark)
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            self._journal.clear()

    def transaction(self, timeout_seconds: Optional[float] = None):
        return self._unit()

    def savepoint(self):
        return self._unit()

    # -------------------------------------------------------------------------
    # Row primitives
    # -------------------------------------------------------------------------

    def rows(self, table: str) -> list[Row]:
        """Rows of a table ordered by id."""
        return [self.tables[table][key] for key in sorted(self.tables[table])]

    def _find(self, table: str, **criteria) -> Optional[Row]:
        for row in self.rows(table):
            if all(value is not None and row.get(column) == value for column, value in criteria.items()):
                return row
        return None

    def _insert(self, table: str, values: Row) -> Row:
        row_id = self._next_id[table]
        row = {"id": row_id, **values}
        self.tables[table][row_id] = row
        self._next_id[table] = row_id + 1

        def undo():
            del self.tables[table][row_id]
            self._next_id[table] = row_id
        self._record(undo)
        return row

    def _replace(self, table: str, row: Row, new_values: Row) -> None:
        previous = dict(row)
        row.clear()
        row.update(new_values)

        def undo():
            row.clear()
            row.update(previous)
        self._record(undo)

    def _delete(self, table: str, row_ids: list[int]) -> int:
        removed = {row_id: self.tables[table].pop(row_id) for row_id in row_ids}

        def undo():
            self.tables[table].update(removed)
        self._record(undo)
        return len(removed)

    def _check_unique(self, table: str, row: Row, column: str, *scope: str) -> None:
        value = row.get(column)
        if value is None:
            return
        for other in self.tables[table].values():
            if other["id"] != row.get("id") and other.get(column) == value and all(
                other.get(s) == row.get(s) for s in scope
            ):
                raise CodeConflictError(
                    "alpha3" if "alpha3" in column else "alpha2",
                    f"duplicate {column}={value} in {table}",
                )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def truncate_all(self) -> None:
        previous = {name: dict(rows) for name, rows in self.tables.items()}
        previous_ids = dict(self._next_id)
        for name in self.TABLES:
            self.tables[name] = {}
            self._next_id[name] = 1

        def undo():
            self.tables.update(previous)
            self._next_id.update(previous_ids)
        self._record(undo)

    def _merge_into(self, table: str, policy: MergePolicy, row: Row, record, *unique: tuple[str, ...]) -> None:
        merged = merge_fields(policy, row, record_values(record), record.keep_existing_name)
        for columns in unique:
            self._check_unique(table, merged, *columns)
        self._replace(table, row, merged)

    def _upsert_coded(
        self,
        table: str,
        policy: MergePolicy,
        record,
        a2_column: str,
        a3_column: str,
        scope: tuple[str, ...] = (),
    ) -> None:
        values = record_values(record)
        key = {s: values[s] for s in scope}
        unique = ((a2_column, *scope), (a3_column, *scope))

        if values.get(a2_column):
            existing = self._find(table, **key, **{a2_column: values[a2_column]})
            if existing is None and values.get(a3_column) and self._find(table, **key, **{a3_column: values[a3_column]}):
                raise CodeConflictError("alpha3")
        else:
            existing = self._find(table, **key, **{a3_column: values[a3_column]})

        if existing is None:
            self._insert(table, values)
            return
        self._merge_into(table, policy, existing, record, *unique)

    def _update_by_alpha3(self, table: str, policy: MergePolicy, record, a2_column: str, a3_column: str,
                          scope: tuple[str, ...] = ()) -> bool:
        values = record_values(record)
        if not values.get(a3_column):
            return False
        existing = self._find(table, **{s: values[s] for s in scope}, **{a3_column: values[a3_column]})
        if existing is None:
            return False
        self._merge_into(table, policy, existing, record, (a2_column, *scope), (a3_column, *scope))
        return True

    def upsert_country(self, record: CountryRecord) -> None:
        self._upsert_coded("countries", COUNTRY_POLICY, record, "iso_alpha2_code", "iso_alpha3_code")

    def update_country_by_alpha3(self, record: CountryRecord) -> bool:
        return self._update_by_alpha3("countries", COUNTRY_POLICY, record, "iso_alpha2_code", "iso_alpha3_code")

    def upsert_region(self, record: RegionRecord) -> None:
        self._upsert_coded(
            "regions", REGION_POLICY, record,
            "country_iso_alpha2_code", "country_iso_alpha3_code", scope=("identifier",),
        )

    def update_region_by_alpha3(self, record: RegionRecord) -> bool:
        return self._update_by_alpha3(
            "regions", REGION_POLICY, record,
            "country_iso_alpha2_code", "country_iso_alpha3_code", scope=("identifier",),
        )

    def upsert_city(self, record: CityRecord) -> None:
        self._upsert_coded(
            "cities", CITY_POLICY, record,
            "country_iso_alpha2_code", "country_iso_alpha3_code", scope=("identifier",),
        )

    def update_city_by_alpha3(self, record: CityRecord) -> bool:
        return self._update_by_alpha3(
            "cities", CITY_POLICY, record,
            "country_iso_alpha2_code", "country_iso_alpha3_code", scope=("identifier",),
        )

    def upsert_timezone(self, record: TimezoneRecord) -> None:
        existing = self._find("timezones", timezone_id=record.timezone_id)
        if existing is None:
            self._insert("timezones", record_values(record))
        else:
            self._replace("timezones", existing, merge_fields(TIMEZONE_POLICY, existing, record_values(record)))

    # -------------------------------------------------------------------------
    # Reconciliation primitives
    # -------------------------------------------------------------------------

    def _set_region(self, city: Row, identifier: Optional[str]) -> None:
        self._replace("cities", city, {**city, "region_identifier": identifier})

    def _country_regions(self, city: Row) -> list[Row]:
        return [region for region in self.rows("regions") if _same_country(city, region)]

    def resolve_region_hints(self) -> int:
        changed = 0
        for city in self.rows("cities"):
            hint = city.get("region_identifier")
            if hint is None:
                continue
            regions = self._country_regions(city)
            if not any(r["identifier"] == hint for r in regions):
                by_name = next((r for r in regions if r.get("name_key") == hint), None)
                if by_name is not None:
                    self._set_region(city, by_name["identifier"])
                    hint = by_name["identifier"]
                    changed += 1

            geometry = city["geometry"]
            centroid = geometry.centroid
            valid = any(
                r["identifier"] == hint
                and (r["geometry"].intersects(geometry) or r["geometry"].contains(centroid))
                for r in regions
            )
            if not valid:
                self._set_region(city, None)
                changed += 1
        return changed

    def assign_regions(self, predicate: str) -> int:
        assigned = 0
        for city in self.rows("cities"):
            if city.get("region_identifier") is not None:
                continue
            geometry = city["geometry"]
            if predicate == CENTROID_CONTAINMENT:
                centroid = geometry.centroid
                match = next((r for r in self._country_regions(city) if r["geometry"].contains(centroid)), None)
            elif predicate == BOUNDARY_INTERSECTION:
                match = next((r for r in self._country_regions(city) if r["geometry"].intersects(geometry)), None)
            else:
                raise ValueError(f"Unknown predicate: {predicate}")
            if match is not None:
                self._set_region(city, match["identifier"])
                assigned += 1
        return assigned

    def delete_cross_country_cities(self) -> int:
        doomed = []
        for city in self.rows("cities"):
            hint = city.get("region_identifier")
            if hint is None:
                continue
            if any(r["identifier"] == hint and _codes_conflict(city, r) for r in self._country_regions(city)):
                doomed.append(city["id"])
        return self._delete("cities", doomed) if doomed else 0

    def delete_unassigned_cities(self) -> int:
        doomed = [
            city["id"] for city in self.rows("cities")
            if city.get("region_identifier") is None
            and (city.get("country_iso_alpha2_code") or city.get("country_iso_alpha3_code"))
        ]
        return self._delete("cities", doomed) if doomed else 0

    def count_codeless_cities(self) -> int:
        return sum(
            1 for city in self.rows("cities")
            if not city.get("country_iso_alpha2_code") and not city.get("country_iso_alpha3_code")
        )

    def count_regions_without_country(self) -> int:
        countries = self.rows("countries")
        count = 0
        for region in self.rows("regions"):
            a2, a3 = region.get("country_iso_alpha2_code"), region.get("country_iso_alpha3_code")
            if not any((a2 and c.get("iso_alpha2_code") == a2) or (a3 and c.get("iso_alpha3_code") == a3)
                       for c in countries):
                count += 1
        return count

    def count_region_country_conflicts(self) -> int:
        by_a2 = {c["iso_alpha2_code"]: c for c in self.rows("countries") if c.get("iso_alpha2_code")}
        count = 0
        for region in self.rows("regions"):
            a2, a3 = region.get("country_iso_alpha2_code"), region.get("country_iso_alpha3_code")
            country = by_a2.get(a2) if a2 else None
            if a3 and country is not None and country.get("iso_alpha3_code") and country["iso_alpha3_code"] != a3:
                count += 1
        return count

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def country_code_pairs(self) -> list[tuple[Optional[str], Optional[str]]]:
        return [(c.get("iso_alpha2_code"), c.get("iso_alpha3_code")) for c in self.rows("countries")]

    def entity_counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}

    def find_containing(self, table: str, lon: float, lat: float) -> Optional[dict[str, Any]]:
        point = Point(lon, lat)
        for row in self.rows(table):
            if row["geometry"].contains(point):
                return {k: v for k, v in row.items() if k != "geometry"}
        return None

    # -------------------------------------------------------------------------
    # Watermark and lock
    # -------------------------------------------------------------------------

    def get_watermark(self) -> Optional[datetime]:
        return self.watermark

    def set_watermark(self, when: datetime) -> None:
        self.watermark = when

    def try_acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        now = datetime.now(timezone.utc)
        current = self.locks.get(name)
        if current is not None and current["expires_at"] >= now:
            return False
        self.locks[name] = {
            "lock_name": name,
            "holder": holder,
            "acquired_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
        return True

    def refresh_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        current = self.locks.get(name)
        if current is None or current["holder"] != holder:
            return False
        current["expires_at"] = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        return True

    def release_lock(self, name: str, holder: str) -> None:
        current = self.locks.get(name)
        if current is not None and current["holder"] == holder:
            del self.locks[name]

    def lock_holder(self, name: str) -> Optional[dict[str, Any]]:
        current = self.locks.get(name)
        if current is None or current["expires_at"] < datetime.now(timezone.utc):
            return None
        return dict(current)
