"""
Store interface shared by the merge engine, the reconciler, the orchestrator
and the lookup service.

Two implementations exist: :class:`~georesolver.store.postgis.PostGISStore`
(production, SQLAlchemy + GeoAlchemy2) and
:class:`~georesolver.store.memory.MemoryStore` (shapely, used for dry runs).
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Optional

from georesolver.extraction import CityRecord, CountryRecord, RegionRecord, TimezoneRecord


# Predicates for the staged region assignment
CENTROID_CONTAINMENT = "centroid"
BOUNDARY_INTERSECTION = "intersects"


class CodeConflictError(Exception):
    """
    A write collided on a unique code other than the one used as conflict target.

    ``column`` names the code column that collided, so the merge engine can
    retry as an update keyed by that column.
    """

    def __init__(self, column: str, message: str = ""):
        super().__init__(message or f"unique conflict on {column}")
        self.column = column


class ReferenceStore(ABC):
    """Abstract store of countries, regions, cities, timezones and bookkeeping rows."""

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def transaction(self, timeout_seconds: Optional[float] = None) -> AbstractContextManager:
        """Enclosing unit of work, committed on success and rolled back on error.

        ``timeout_seconds`` bounds each statement executed inside it.
        """

    @abstractmethod
    def savepoint(self) -> AbstractContextManager:
        """Nested unit inside :meth:`transaction`; an error rolls back only this unit."""

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @abstractmethod
    def truncate_all(self) -> None:
        """Empty every reference table (not the watermark or locks)."""

    @abstractmethod
    def upsert_country(self, record: CountryRecord) -> None:
        """Insert-or-merge keyed by alpha-2 when present, else alpha-3.

        Raises:
            CodeConflictError: when the insert collides on the other code
        """

    @abstractmethod
    def update_country_by_alpha3(self, record: CountryRecord) -> bool:
        """Merge into the country holding ``record.iso_alpha3_code``; False if none."""

    @abstractmethod
    def upsert_region(self, record: RegionRecord) -> None:
        """Insert-or-merge keyed by (identifier, alpha-2) when present, else (identifier, alpha-3)."""

    @abstractmethod
    def update_region_by_alpha3(self, record: RegionRecord) -> bool:
        """Merge into the region keyed by (identifier, alpha-3); False if none."""

    @abstractmethod
    def upsert_city(self, record: CityRecord) -> None:
        """Insert-or-merge keyed by (identifier, alpha-2) when present, else (identifier, alpha-3)."""

    @abstractmethod
    def update_city_by_alpha3(self, record: CityRecord) -> bool:
        """Merge into the city keyed by (identifier, alpha-3); False if none."""

    @abstractmethod
    def upsert_timezone(self, record: TimezoneRecord) -> None:
        """Insert-or-replace keyed by IANA id."""

    # -------------------------------------------------------------------------
    # Reconciliation primitives (set-based)
    # -------------------------------------------------------------------------

    @abstractmethod
    def resolve_region_hints(self) -> int:
        """Validate hint-derived city region references.

        A reference is kept when a same-country region has that identifier and
        intersects the city, rewritten when it matches a same-country region's
        name key instead, and cleared otherwise.

        Returns:
            Number of cities whose reference changed
        """

    @abstractmethod
    def assign_regions(self, predicate: str) -> int:
        """Assign a region to every unassigned city with a same-country region matching ``predicate``.

        Lowest region id wins ties.

        Returns:
            Number of cities assigned
        """

    @abstractmethod
    def delete_cross_country_cities(self) -> int:
        """Delete cities whose assigned region belongs to a different country."""

    @abstractmethod
    def delete_unassigned_cities(self) -> int:
        """Delete cities with a country code that have no region reference."""

    @abstractmethod
    def count_codeless_cities(self) -> int:
        """Cities without any country code (exempt from deletion)."""

    @abstractmethod
    def count_regions_without_country(self) -> int:
        """Regions whose codes match no country row."""

    @abstractmethod
    def count_region_country_conflicts(self) -> int:
        """Regions whose two codes point at different countries."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @abstractmethod
    def country_code_pairs(self) -> list[tuple[Optional[str], Optional[str]]]:
        """(alpha-2, alpha-3) of every stored country."""

    @abstractmethod
    def entity_counts(self) -> dict[str, int]:
        """Row counts per reference table."""

    @abstractmethod
    def find_containing(self, table: str, lon: float, lat: float) -> Optional[dict[str, Any]]:
        """Row of ``table`` whose geometry contains the point, as a plain dict."""

    # -------------------------------------------------------------------------
    # Watermark and lock
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_watermark(self) -> Optional[datetime]:
        """Completion time of the last fully successful run, if any."""

    @abstractmethod
    def set_watermark(self, when: datetime) -> None:
        """Create or overwrite the singleton watermark row."""

    @abstractmethod
    def try_acquire_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """Take the named lock if free or expired. Never waits."""

    @abstractmethod
    def refresh_lock(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """Extend a lock still held by ``holder``."""

    @abstractmethod
    def release_lock(self, name: str, holder: str) -> None:
        """Release the named lock if ``holder`` owns it."""

    @abstractmethod
    def lock_holder(self, name: str) -> Optional[dict[str, Any]]:
        """Current unexpired holder of the named lock, if any."""
