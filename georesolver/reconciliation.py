"""
Spatial reconciliation of the region <-> city hierarchy.

Runs after the bulk load. Each step is one set-based store operation executed
in its own transaction with its own statement timeout; a step that fails or
times out is logged and recorded, and the remaining steps still run.

Steps:
    hints       validate region references taken from free-text source fields
    centroid    assign regions whose geometry contains the city centroid
    intersects  assign regions whose geometry intersects the city
    cross       delete cities whose region belongs to another country
    cleanup     delete cities with a country code but no region
    flags       count codeless cities and regions without a matching country
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from georesolver.config import settings
from georesolver.store.base import BOUNDARY_INTERSECTION, CENTROID_CONTAINMENT, ReferenceStore


HIERARCHY_VIOLATION = "hierarchy violation"
CODELESS_CITY = "city without country code"
REGION_WITHOUT_COUNTRY = "region without country"
REGION_COUNTRY_CONFLICT = "region country conflict"


@dataclass
class ReconciliationResult:
    """Mutation counts and findings of one reconciliation pass."""
    hints_changed: int = 0
    assigned_by_centroid: int = 0
    assigned_by_intersection: int = 0
    cross_country_removed: int = 0
    unassigned_removed: int = 0
    removals: Counter = field(default_factory=Counter)
    flags: Counter = field(default_factory=Counter)
    stage_errors: dict[str, str] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def mutations(self) -> int:
        """Total rows updated or deleted."""
        return (
            self.hints_changed
            + self.assigned_by_centroid
            + self.assigned_by_intersection
            + self.cross_country_removed
            + self.unassigned_removed
        )

    @property
    def complete(self) -> bool:
        """False when any step failed or timed out."""
        return not self.stage_errors

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class SpatialReconciler:
    """
    Resolves and validates city parent regions with staged spatial predicates.

    Usage:
        result = SpatialReconciler(store).run()
        print(result.removals["hierarchy violation"])
    """

    def __init__(
        self,
        store: ReferenceStore,
        timeout_seconds: Optional[float] = None,
        remove_unassigned: bool = True,
    ):
        self.store = store
        self.timeout_seconds = timeout_seconds or settings.reconciliation.statement_timeout_seconds
        self.remove_unassigned = remove_unassigned

    def _step(self, name: str, operation: Callable[[], int], result: ReconciliationResult) -> int:
        try:
            with self.store.transaction(timeout_seconds=self.timeout_seconds):
                count = operation()
        except Exception as e:
            # Statement timeouts surface here too; the dataset stays partially reconciled
            result.stage_errors[name] = f"{type(e).__name__}: {e}"
            logger.error(f"Reconciliation step '{name}' failed: {e}")
            return 0
        logger.info(f"Reconciliation step '{name}': {count} rows")
        return count

    def run(self) -> ReconciliationResult:
        result = ReconciliationResult(started_at=datetime.now(timezone.utc))
        store = self.store

        result.hints_changed = self._step("hints", store.resolve_region_hints, result)
        result.assigned_by_centroid = self._step(
            "centroid", lambda: store.assign_regions(CENTROID_CONTAINMENT), result,
        )
        result.assigned_by_intersection = self._step(
            "intersects", lambda: store.assign_regions(BOUNDARY_INTERSECTION), result,
        )

        result.cross_country_removed = self._step("cross", store.delete_cross_country_cities, result)
        if self.remove_unassigned:
            result.unassigned_removed = self._step("cleanup", store.delete_unassigned_cities, result)
        else:
            logger.warning("Region data unavailable this run; unassigned cities are kept")

        removed = result.cross_country_removed + result.unassigned_removed
        if removed:
            result.removals[HIERARCHY_VIOLATION] += removed

        flags = {
            CODELESS_CITY: store.count_codeless_cities,
            REGION_WITHOUT_COUNTRY: store.count_regions_without_country,
            REGION_COUNTRY_CONFLICT: store.count_region_country_conflicts,
        }
        for flag, counter in flags.items():
            count = self._step(f"flag: {flag}", counter, result)
            if count:
                result.flags[flag] = count
                logger.warning(f"Flagged {count} x {flag}")

        result.completed_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconciliation complete: {result.assigned_by_centroid} by centroid, "
            f"{result.assigned_by_intersection} by intersection, "
            f"{removed} removed as {HIERARCHY_VIOLATION}"
        )
        return result
