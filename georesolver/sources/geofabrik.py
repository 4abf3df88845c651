"""
Geofabrik OSM extracts for national city polygons.

Each country maps to one or more Geofabrik extract paths (large countries are
published split into sub-regions). Archives are cached on disk by URL hash
with their ETag, and re-downloaded only when Geofabrik reports a change.
"""

import hashlib
import zipfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Optional

import httpx
from loguru import logger

from georesolver.config import GEOFABRIK_URL_TEMPLATE, OSM_PLACE_FILTER, settings
from georesolver.sources.archives import ConversionError, load_feature_collection
from georesolver.utils.http import HTTPError, atomic_write_bytes, fetch_with_retry


PLACES_LAYER = "gis_osm_places_a_free_1.shp"

# Countries published as several sub-region extracts
MULTI_ARCHIVE_PATHS = {
    "RU": [
        "russia/central-fed-district",
        "russia/northwestern-fed-district",
        "russia/siberian-fed-district",
        "russia/ural-fed-district",
        "russia/far-eastern-fed-district",
        "russia/volga-fed-district",
        "russia/south-fed-district",
        "russia/north-caucasus-fed-district",
    ],
}

EXTRACT_PATHS = {
    "AL": "europe/albania",
    "AT": "europe/austria",
    "BA": "europe/bosnia-herzegovina",
    "BE": "europe/belgium",
    "BG": "europe/bulgaria",
    "BY": "europe/belarus",
    "CH": "europe/switzerland",
    "CY": "europe/cyprus",
    "CZ": "europe/czech-republic",
    "DE": "europe/germany",
    "DK": "europe/denmark",
    "EE": "europe/estonia",
    "ES": "europe/spain",
    "FI": "europe/finland",
    "FR": "europe/france",
    "GB": "europe/great-britain",
    "GR": "europe/greece",
    "HR": "europe/croatia",
    "HU": "europe/hungary",
    "IE": "europe/ireland-and-northern-ireland",
    "IS": "europe/iceland",
    "IT": "europe/italy",
    "LT": "europe/lithuania",
    "LU": "europe/luxembourg",
    "LV": "europe/latvia",
    "MD": "europe/moldova",
    "ME": "europe/montenegro",
    "MK": "europe/macedonia",
    "MT": "europe/malta",
    "NL": "europe/netherlands",
    "NO": "europe/norway",
    "PL": "europe/poland",
    "PT": "europe/portugal",
    "RO": "europe/romania",
    "RS": "europe/serbia",
    "SE": "europe/sweden",
    "SI": "europe/slovenia",
    "SK": "europe/slovakia",
    "UA": "europe/ukraine",
}


class GeofabrikPathResolver:
    """Maps ISO 3166-1 alpha-2 codes to Geofabrik extract paths."""

    def __init__(
        self,
        paths: Optional[dict[str, str]] = None,
        multi_paths: Optional[dict[str, list[str]]] = None,
    ):
        self.paths = paths if paths is not None else EXTRACT_PATHS
        self.multi_paths = multi_paths if multi_paths is not None else MULTI_ARCHIVE_PATHS

    def resolve(self, country_code: str) -> list[str]:
        """
        Extract paths for a country; empty when Geofabrik publishes none we know of.

        Raises:
            ValueError: If the code is not a two-letter string
        """
        code = (country_code or "").strip().upper()
        if len(code) != 2 or not code.isalpha():
            raise ValueError(f"Expected an ISO 3166-1 alpha-2 code, got {country_code!r}")
        if code in self.multi_paths:
            return list(self.multi_paths[code])
        if code in self.paths:
            return [self.paths[code]]
        return []

    def urls(self, country_code: str) -> list[str]:
        return [GEOFABRIK_URL_TEMPLATE.format(path=path) for path in self.resolve(country_code)]

    def supported(self) -> list[str]:
        return sorted({*self.paths, *self.multi_paths})


def _normalize_etag(etag: Optional[str]) -> Optional[str]:
    if not etag:
        return None
    etag = etag.strip()
    if etag.startswith("W/"):
        etag = etag[2:]
    return f'"{etag.strip(chr(34))}"'


def cache_path_for(url: str, cache_dir: Optional[Path] = None) -> Path:
    cache_dir = Path(cache_dir or settings.pipeline.cache_dir / "geofabrik")
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
    return cache_dir / f"{digest}.zip"


def download_extract(
    url: str,
    cache_dir: Optional[Path] = None,
    client: Optional[httpx.Client] = None,
) -> Path:
    """
    Download an extract archive, reusing the cached copy while its ETag matches.

    Returns:
        Path to the cached archive
    """
    archive = cache_path_for(url, cache_dir)
    meta = archive.with_suffix(".meta")

    headers = {}
    if archive.exists() and meta.exists():
        etag = _normalize_etag(meta.read_text(encoding="utf-8"))
        if etag:
            headers["If-None-Match"] = etag

    response = fetch_with_retry(url, headers=headers, client=client)
    if response.status_code == 304:
        logger.info(f"Geofabrik extract unchanged, using cache: {url}")
        return archive

    atomic_write_bytes(archive, response.content)
    etag = _normalize_etag(response.headers.get("ETag"))
    if etag:
        meta.write_text(etag, encoding="utf-8")
    elif meta.exists():
        meta.unlink()
    logger.info(f"Downloaded Geofabrik extract {url} ({len(response.content):,} bytes)")
    return archive


def load_country_places(
    country_code: str,
    resolver: Optional[GeofabrikPathResolver] = None,
    cache_dir: Optional[Path] = None,
    client: Optional[httpx.Client] = None,
    max_workers: Optional[int] = None,
) -> list[dict[str, Any]]:
    """
    City place polygons for one country, merged across all its extracts.

    Extracts are fetched concurrently. The country counts as loaded when at
    least one extract succeeds.

    Raises:
        ConversionError: If every extract failed
    """
    resolver = resolver or GeofabrikPathResolver()
    urls = resolver.urls(country_code)
    if not urls:
        logger.warning(f"No Geofabrik extract known for {country_code}")
        return []

    def fetch_one(url: str) -> list[dict[str, Any]]:
        archive = download_extract(url, cache_dir=cache_dir, client=client)
        collection = load_feature_collection(archive, member=PLACES_LAYER, where=OSM_PLACE_FILTER)
        return collection.get("features", [])

    features: list[dict[str, Any]] = []
    failures: list[str] = []
    max_workers = max_workers or settings.pipeline.download_workers
    with ThreadPoolExecutor(max_workers=min(max_workers, len(urls))) as executor:
        futures = {executor.submit(fetch_one, url): url for url in urls}
        for future in as_completed(futures):
            url = futures[future]
            try:
                features.extend(future.result())
            except (HTTPError, httpx.HTTPError, ConversionError, zipfile.BadZipFile, OSError) as e:
                failures.append(f"{url}: {e}")
                logger.warning(f"Geofabrik extract failed for {country_code}: {url} ({e})")

    if failures and len(failures) == len(urls):
        raise ConversionError(f"All Geofabrik extracts failed for {country_code}: {'; '.join(failures)}")

    logger.info(f"{country_code}: {len(features):,} OSM place polygons from {len(urls) - len(failures)}/{len(urls)} extracts")
    return features
