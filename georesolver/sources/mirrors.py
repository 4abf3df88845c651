"""
Mirror-aware dataset fetching.

Each dataset has an ordered list of mirror URLs. The first mirror that answers
with a non-empty body wins; HTTP errors, network errors and empty bodies move
on to the next mirror. Only when every mirror fails is the dataset reported
unavailable, with the whole chain of attempts.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from georesolver.config import DATA_SOURCES, settings
from georesolver.utils.http import HTTPError, atomic_write_bytes, fetch_with_retry


class SourceUnavailableError(Exception):
    """Every mirror of a dataset failed."""

    def __init__(self, dataset: str, attempts: list[tuple[str, str]]):
        self.dataset = dataset
        self.attempts = attempts
        chain = "; ".join(f"{url} -> {error}" for url, error in attempts) or "no mirrors configured"
        super().__init__(f"All mirrors failed for {dataset}: {chain}")


@dataclass
class FetchedSource:
    """A dataset downloaded from one of its mirrors."""
    dataset: str
    url: str
    path: Path
    size: int


def _filename_for(url: str, dataset: str) -> str:
    name = url.rstrip("/").split("/")[-1].split("?")[0]
    return name or f"{dataset}.bin"


def fetch_first_available(
    dataset: str,
    mirrors: list[str],
    dest_dir: Optional[Path] = None,
    client: Optional[httpx.Client] = None,
) -> FetchedSource:
    """
    Download a dataset from the first mirror that responds successfully.

    Args:
        dataset: Dataset key, used for paths and messages
        mirrors: Ordered mirror URLs
        dest_dir: Where to store the download (default: data_raw_dir/<dataset>)
        client: Optional httpx client

    Returns:
        FetchedSource describing the stored file

    Raises:
        SourceUnavailableError: When every mirror failed
    """
    dest_dir = Path(dest_dir or settings.pipeline.data_raw_dir / dataset)
    attempts: list[tuple[str, str]] = []

    for url in mirrors:
        logger.info(f"[{dataset}] trying mirror {url}")
        try:
            response = fetch_with_retry(url, client=client)
        except (HTTPError, httpx.HTTPError) as e:
            attempts.append((url, f"{type(e).__name__}: {e}"))
            logger.warning(f"[{dataset}] mirror failed: {url} ({e})")
            continue

        content = response.content
        if not content or not content.strip():
            attempts.append((url, "empty body"))
            logger.warning(f"[{dataset}] mirror returned an empty body: {url}")
            continue

        path = atomic_write_bytes(dest_dir / _filename_for(url, dataset), content)
        logger.info(f"[{dataset}] downloaded {len(content):,} bytes from {url}")
        return FetchedSource(dataset=dataset, url=url, path=path, size=len(content))

    raise SourceUnavailableError(dataset, attempts)


def fetch_datasets(
    datasets: list[str],
    client: Optional[httpx.Client] = None,
    max_workers: Optional[int] = None,
) -> dict[str, FetchedSource | SourceUnavailableError]:
    """
    Fetch several independent datasets concurrently.

    Failures are returned in place of the result so the caller can decide
    which ones are fatal.
    """
    results: dict[str, FetchedSource | SourceUnavailableError] = {}
    if not datasets:
        return results

    max_workers = max_workers or settings.pipeline.download_workers
    with ThreadPoolExecutor(max_workers=min(max_workers, len(datasets))) as executor:
        futures = {
            executor.submit(fetch_first_available, dataset, DATA_SOURCES[dataset]["mirrors"], None, client): dataset
            for dataset in datasets
        }
        for future in as_completed(futures):
            dataset = futures[future]
            try:
                results[dataset] = future.result()
            except SourceUnavailableError as e:
                logger.error(str(e))
                results[dataset] = e
    return results
