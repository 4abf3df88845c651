"""
Base ingester class for reference-data phases.

Each phase (countries, regions, cities, timezones) inherits from BaseIngester
and implements ``parse()``. Fetching, the phase transaction and the
optional-dataset fallback are shared here.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Optional, Union

import httpx
from loguru import logger

from georesolver.config import DATA_SOURCES, settings
from georesolver.extraction import CodeLookup, FieldExtractor, Record, Rejection
from georesolver.sources import (
    ConversionError,
    FetchedSource,
    SourceUnavailableError,
    fetch_first_available,
    load_feature_collection,
)
from georesolver.store.base import ReferenceStore
from georesolver.upsert import PhaseStats, UpsertEngine, utcnow


Prefetched = Union[FetchedSource, SourceUnavailableError, None]


class BaseIngester(ABC):
    """
    Abstract base class for phase ingesters.

    Subclasses must set ``dataset`` and implement:
    - parse(): Turn a FeatureCollection into records or rejections
    """

    dataset: str = None     # key into DATA_SOURCES

    def __init__(
        self,
        store: ReferenceStore,
        lookup: Optional[CodeLookup] = None,
        source: Prefetched = None,
        skip_fetch: bool = False,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the ingester.

        Args:
            store: Target reference store
            lookup: Alpha-2 <-> alpha-3 lookup shared by every phase of the run
            source: Result of a concurrent prefetch, if the orchestrator did one
            skip_fetch: Reuse the newest raw file instead of downloading
            client: Optional httpx client
        """
        if self.dataset is None:
            raise ValueError("dataset must be set in subclass")

        self.store = store
        self.lookup = lookup if lookup is not None else CodeLookup()
        self.source = source
        self.skip_fetch = skip_fetch
        self.client = client

        self.source_info = DATA_SOURCES.get(self.dataset, {})
        self.mandatory = self.source_info.get("mandatory", False)
        self.raw_data_dir = settings.pipeline.data_raw_dir / self.dataset

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def latest_raw_file(self) -> Path:
        files = [p for p in self.raw_data_dir.glob("*") if p.is_file() and p.suffix != ".tmp"]
        if not files:
            raise SourceUnavailableError(self.dataset, [(str(self.raw_data_dir), "no raw data files")])
        return max(files, key=lambda p: p.stat().st_mtime)

    def fetch(self) -> dict[str, Any]:
        """
        Materialize the dataset as a GeoJSON FeatureCollection.

        Raises:
            SourceUnavailableError: If every mirror failed
            ConversionError: If the payload could not be converted
        """
        if isinstance(self.source, SourceUnavailableError):
            raise self.source

        if isinstance(self.source, FetchedSource):
            path = self.source.path
        elif self.skip_fetch:
            path = self.latest_raw_file()
            logger.info(f"Using existing raw data: {path}")
        else:
            path = fetch_first_available(
                self.dataset, self.source_info.get("mirrors", []), self.raw_data_dir, self.client,
            ).path

        return load_feature_collection(path)

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def extractor(self, **kwargs) -> FieldExtractor:
        return FieldExtractor(lookup=self.lookup, **kwargs)

    @abstractmethod
    def parse(self, collection: dict[str, Any]) -> Iterator[Union[Record, Rejection]]:
        """
        Parse a FeatureCollection into canonical records.

        Args:
            collection: GeoJSON FeatureCollection dict

        Yields:
            Records, or Rejections for features that could not be extracted
        """
        pass

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> PhaseStats:
        """
        Run the phase: fetch, parse and merge into the store in one transaction.

        An unavailable optional dataset marks the phase ``skipped``; an
        unavailable mandatory dataset or a failed transaction marks it ``failed``.
        """
        stats = PhaseStats(phase=self.dataset, started_at=utcnow())

        try:
            collection = self.fetch()
        except (SourceUnavailableError, ConversionError) as e:
            stats.errors.append(str(e))
            stats.completed_at = utcnow()
            if self.mandatory:
                stats.status = "failed"
                logger.error(f"[{self.dataset}] mandatory dataset unavailable: {e}")
            else:
                stats.status = "skipped"
                stats.success = True
                logger.warning(f"[{self.dataset}] dataset unavailable, phase skipped: {e}")
            return stats

        try:
            UpsertEngine(self.store, self.lookup).apply_all(self.parse(collection), stats)
        except Exception as e:
            stats.status = "failed"
            stats.errors.append(f"{type(e).__name__}: {e}")
            stats.completed_at = utcnow()
            logger.error(f"[{self.dataset}] phase failed: {e}")
            return stats

        stats.status = "loaded"
        stats.success = True
        stats.log_summary()
        return stats
