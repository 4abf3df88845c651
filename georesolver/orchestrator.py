"""
Ingestion orchestrator.

Sequences one full update run:

    lock -> prefetch -> truncate -> countries -> regions -> cities -> timezones
         -> reconciliation -> watermark -> unlock

Phases are strictly sequential because regions and cities complete their
country codes from the countries loaded earlier in the same run. Downloads
are independent and run concurrently before the first mutation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx
from loguru import logger

from georesolver.config import DATA_SOURCES, settings
from georesolver.extraction import CodeLookup
from georesolver.ingesters import PHASES
from georesolver.lock import NamedLock
from georesolver.reconciliation import ReconciliationResult, SpatialReconciler
from georesolver.sources import SourceUnavailableError, fetch_datasets
from georesolver.store.base import ReferenceStore
from georesolver.upsert import PhaseStats, utcnow


@dataclass
class RunReport:
    """Outcome of one update run."""
    success: bool = False
    phases: dict[str, PhaseStats] = field(default_factory=dict)
    reconciliation: Optional[ReconciliationResult] = None
    errors: list[str] = field(default_factory=list)
    watermark: Optional[datetime] = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def skipped_phases(self) -> list[str]:
        return [name for name, stats in self.phases.items() if stats.status == "skipped"]


class IngestionOrchestrator:
    """
    Runs a full refresh of the reference tables under the update lock.

    Usage:
        report = IngestionOrchestrator(store).run()
        if not report.success:
            sys.exit(1)
    """

    def __init__(
        self,
        store: ReferenceStore,
        skip_fetch: bool = False,
        truncate: Optional[bool] = None,
        client: Optional[httpx.Client] = None,
        phases: Optional[list] = None,
        lock: Optional[NamedLock] = None,
    ):
        self.store = store
        self.skip_fetch = skip_fetch
        self.truncate = settings.pipeline.truncate_before_load if truncate is None else truncate
        self.client = client
        self.phases = phases if phases is not None else PHASES
        self.lock = lock or NamedLock(store)

    def prefetch(self) -> dict:
        """Download every phase's dataset concurrently."""
        if self.skip_fetch:
            return {}
        datasets = [phase.dataset for phase in self.phases]
        logger.info(f"Fetching {len(datasets)} datasets: {', '.join(datasets)}")
        return fetch_datasets(datasets, client=self.client)

    def run(self) -> RunReport:
        """
        Execute the run.

        Raises:
            LockNotAcquiredError: If another run holds the lock (nothing is changed)
        """
        report = RunReport(started_at=utcnow())
        self.lock.acquire()
        try:
            self._run(report)
        finally:
            self.lock.release()
            report.completed_at = utcnow()

        if report.success:
            logger.info(f"Update run succeeded in {report.duration_seconds:.1f}s")
        else:
            logger.error(f"Update run failed: {'; '.join(report.errors)}")
        return report

    def _run(self, report: RunReport) -> None:
        sources = self.prefetch()

        # A missing mandatory dataset fails the run before anything is truncated
        for phase in self.phases:
            source = sources.get(phase.dataset)
            if isinstance(source, SourceUnavailableError) and DATA_SOURCES[phase.dataset].get("mandatory"):
                report.errors.append(str(source))
                return

        if self.truncate:
            logger.info("Truncating reference tables")
            with self.store.transaction():
                self.store.truncate_all()

        lookup = CodeLookup(self.store.country_code_pairs())

        for phase in self.phases:
            ingester = phase(
                self.store,
                lookup,
                source=sources.get(phase.dataset),
                skip_fetch=self.skip_fetch,
                client=self.client,
            )
            stats = ingester.run()
            report.phases[phase.dataset] = stats

            if not self.lock.refresh():
                report.errors.append(f"Lock '{self.lock.name}' lost after {phase.dataset} phase; run aborted")
                return

            if stats.status == "failed":
                report.errors.extend(f"{phase.dataset}: {error}" for error in stats.errors)
                if ingester.mandatory:
                    return

        # Without regions no city can be assigned, so unassigned cities are kept
        regions = report.phases.get("regions")
        regions_loaded = regions is not None and regions.status == "loaded"
        report.reconciliation = SpatialReconciler(self.store, remove_unassigned=regions_loaded).run()

        if report.errors:
            return

        self.store.set_watermark(report.started_at)
        report.watermark = report.started_at
        report.success = True

    def reconcile(self) -> ReconciliationResult:
        """Run only the reconciliation pass, under the lock."""
        with self.lock:
            return SpatialReconciler(self.store).run()
