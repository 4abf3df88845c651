"""
Upsert/merge engine.

Applies extracted records to a reference store inside one transaction per
phase. Each feature runs in its own savepoint, so a failing statement is
rolled back alone and the phase carries on with the next feature.
"""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from georesolver.config import settings
from georesolver.extraction import (
    CityRecord,
    CodeLookup,
    CountryRecord,
    Record,
    RegionRecord,
    Rejection,
    TimezoneRecord,
)
from georesolver.store.base import CodeConflictError, ReferenceStore


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PhaseStats:
    """Counters for one ingestion phase."""
    phase: str
    success: bool = False
    status: str = "pending"     # loaded, skipped, failed
    features_seen: int = 0
    processed: int = 0
    skipped: int = 0
    fallback_updates: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    samples: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    sample_limit: int = field(default_factory=lambda: settings.pipeline.skip_log_sample)

    @property
    def duration_seconds(self) -> float | None:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def record_skip(self, reason: str, detail: str = "") -> None:
        """Count a skipped feature; only the first few are logged individually."""
        self.skipped += 1
        self.skip_reasons[reason] += 1
        if len(self.samples) < self.sample_limit:
            message = detail or reason
            self.samples.append(message)
            logger.warning(f"[{self.phase}] skipped feature: {message}")

    def log_summary(self) -> None:
        duration = f"{self.duration_seconds:.1f}s" if self.duration_seconds is not None else "-"
        logger.info(
            f"[{self.phase}] {self.status}: {self.processed} processed, "
            f"{self.skipped} skipped of {self.features_seen} features ({duration})"
        )
        for reason, count in self.skip_reasons.most_common():
            logger.info(f"[{self.phase}]   {reason}: {count}")
        if self.fallback_updates:
            logger.info(f"[{self.phase}]   merged via alpha-3 fallback: {self.fallback_updates}")


class UpsertEngine:
    """
    Writes canonical records with natural-key conflict resolution.

    Records keyed by alternative codes first try the alpha-2 path (or alpha-3
    when that is all they have). When the insert collides on the other code,
    the engine falls back to updating the row that already holds the alpha-3
    code instead of failing the feature.
    """

    def __init__(self, store: ReferenceStore, lookup: Optional[CodeLookup] = None):
        self.store = store
        self.lookup = lookup if lookup is not None else CodeLookup()
        self._writers = {
            CountryRecord: (store.upsert_country, store.update_country_by_alpha3),
            RegionRecord: (store.upsert_region, store.update_region_by_alpha3),
            CityRecord: (store.upsert_city, store.update_city_by_alpha3),
            TimezoneRecord: (store.upsert_timezone, None),
        }

    def _write(self, record: Record, stats: PhaseStats) -> None:
        upsert, fallback = self._writers[type(record)]
        try:
            with self.store.savepoint():
                upsert(record)
        except CodeConflictError as e:
            if fallback is None or e.column != "alpha3" or not fallback(record):
                raise
            stats.fallback_updates += 1
            logger.debug(f"[{stats.phase}] {record.natural_key}: merged by alpha-3 after {e}")

    def apply(self, record: Record, stats: PhaseStats) -> bool:
        """Apply one record inside its own savepoint.

        Returns:
            True when the record was written, False when it was skipped
        """
        try:
            with self.store.savepoint():
                self._write(record, stats)
        except Exception as e:
            stats.record_skip(f"Database error: {type(e).__name__}", f"{record.natural_key}: {e}")
            return False

        if isinstance(record, CountryRecord):
            self.lookup.add(record.iso_alpha2_code, record.iso_alpha3_code)
        stats.processed += 1
        return True

    def apply_all(self, results: Iterable[Record | Rejection], stats: PhaseStats) -> PhaseStats:
        """Apply a stream of extraction results as one phase transaction."""
        stats.started_at = stats.started_at or utcnow()
        with self.store.transaction():
            for item in results:
                stats.features_seen += 1
                if isinstance(item, Rejection):
                    stats.record_skip(item.reason, str(item))
                    continue
                self.apply(item, stats)
        stats.completed_at = utcnow()
        return stats
